"""Adds a greeting header to every request and a ``greet`` command."""

name = "greeter"
version = "1.0.0"
description = "Greets every request"
author = "examples"
default_config = {"greeting": "hello"}
config_schema = {
    "required": ["greeting"],
    "properties": {"greeting": {"type": "string"}},
}


async def load(host, config, context):
    @context.hook("request:start", priority=20)
    def stamp(request):
        request.setdefault("headers", {})["x-greeting"] = config["greeting"]
        return request

    context.add_command("greet", lambda who="world": f"{config['greeting']}, {who}", "Say hello")
    context.log("success", "ready")


def unload(host, config):
    pass
