from collections import Counter

counts = Counter()


def load(host, config, context):
    def count(request):
        counts[request.get("path", "?")] += 1

    context.hook("request:start", count, priority=1)
    context.add_route("get", config["route"], lambda request: dict(counts))
