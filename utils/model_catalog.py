PROVIDER = "anthropic"
DEFAULT_MODEL = "claude-opus-4-6"

MODEL_CATALOG = [
    {"id": "claude-opus-4-6", "name": "Claude Opus 4.6"},
    {"id": "claude-sonnet-4-5-20250929", "name": "Claude Sonnet 4.5"},
    {"id": "claude-haiku-4-5-20251001", "name": "Claude Haiku 4.5"},
]


def get_model(model_id):
    for model in MODEL_CATALOG:
        if model["id"] == model_id:
            return model
    return None


def resolve_model_name(model_id):
    model = get_model(model_id)
    return model["name"] if model else model_id


def primary_reference(model_id):
    return f"{PROVIDER}/{model_id}"


def strip_provider(reference):
    if not reference:
        return ""
    _, sep, model_id = reference.partition("/")
    return model_id if sep else reference
