"""Real-time call orchestration: presence, matchmaking, ringing, signaling and billing.

Everything in this package runs inside one process and is coordinated by
`calls.engine.CallEngine`. The user directory is reached only through the
`calls.directory.Directory` protocol.
"""
