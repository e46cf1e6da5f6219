"""
System API - HTTP surface of the hosting system service

Provides:
- The private REST namespace with the FLUSH and PURGE cache methods
- The nonce-protected web flush trigger with its growl notice
- HTTP cache lifetime headers
"""
