"""Auth-state notifications.

Learn: Events flow through two channels:
1. Identity provider → AuthEventBus (in-process observers)
2. Redis PUBLISH/SUBSCRIBE → AuthEventBus (sign-outs from other processes)

The session cache is kept in step by the auth gateway's listener on
the bus, whatever the origin of the change.
"""
