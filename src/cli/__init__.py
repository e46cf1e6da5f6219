"""
CLI - Command line entry points of the hosting system service.
"""
