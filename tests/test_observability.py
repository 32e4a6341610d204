"""Tracing helpers are inert when observability is switched off in param.yaml."""

from infrastructure import observability


def test_observe_returns_function_unchanged():
    def handler():
        return "ok"

    assert observability.observe(name="route_request")(handler) is handler


def test_prompt_template_falls_back_to_local():
    assert observability.fetch_prompt_template("router-classifier-system", fallback="local") == "local"


def test_trace_updates_are_noops():
    observability.update_current_trace(user_id="u", session_id="s", tags=["router"])
    observability.update_current_observation(input="hi", model="test-model")
    observability.flush()
