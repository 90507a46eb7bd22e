"""
AuthRPD Application Layer

This package wires the credential components into an aiohttp application and
its command line tools.

Key Components:
- server.py: Web server configuration, startup/shutdown and middleware setup
- config.py: Configuration management using Pydantic settings, typed AppKeys
- handlers/: Request handlers for the public key set and internal probes
- tasks.py: Background tasks for key rotation and health monitoring
- cli.py: Logging configuration and the server entry point
- util/: Operator utilities for signing keys

The application uses two middleware layers:
- Statsd middleware for request metrics
- Sentry middleware for error reporting

Endpoints:
- /.well-known/jwks.json: public keys of the rotation window
- /internal/alive, /internal/ready: liveness and readiness probes
"""
