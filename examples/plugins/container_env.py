"""Example skyreg plugin: take service details from the container's env vars.

    docker run -e DNS_SERVICE=cache -e DNS_TTL=30 redis

Run with: python main.py --domain skydns.local --plugins examples/plugins
"""


def create_service(container, defaults):
    env = {k: v for k, v in container["env"].items() if k.startswith("DNS_")}

    return {
        "port": int(env.get("DNS_PORT", defaults.port)),
        "environment": env.get("DNS_ENVIRONMENT") or defaults.environment,
        "ttl": int(env.get("DNS_TTL", defaults.ttl)),
        "name": env.get("DNS_SERVICE") or defaults.clean_image_name(container["image"]),
        "instance": env.get("DNS_INSTANCE") or defaults.remove_slash(container["name"]),
        "host": container["ip_address"],
    }
