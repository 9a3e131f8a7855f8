"""Records request paths in the extension's storage."""


def load(host, config, context):
    def record(request):
        seen = context.storage.get("paths", [])
        seen.append(request.get("path"))
        context.storage.set("paths", seen[-config.get("keep", 50):])

    context.hook("request:end", record)
    context.add_route("get", "/audit", lambda request: context.storage.get("paths", []))


def deactivate(host, config):
    pass


extension = {
    "name": "audit",
    "version": "0.2.0",
    "description": "Request audit trail",
    "author": "examples",
    "dependencies": ["greeter"],
    "hooks": ["request:start", "request:end"],
    "load": load,
    "deactivate": deactivate,
}
