"""skyreg: register running Docker containers in SkyDNS.

Single-host watcher that:
 - seeds registrations from the containers already running at startup
 - follows the Docker event stream to register / deregister containers
 - keeps every registration alive with a per-container TTL heartbeat

Stale entries expire on their own if the watcher dies.
"""
