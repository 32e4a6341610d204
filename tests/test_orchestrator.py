"""Scenario tests for AgentOrchestrator.route_request and its registry."""

import pytest

from agents.accumulator import OutputAccumulator, StreamState
from agents.classifier import ClassifierResult, LLMClassifier
from agents.errors import RegistryConfigurationError
from agents.orchestrator import NO_AGENT_ID, AgentOrchestrator, FallbackMode, OrchestratorConfig
from infrastructure import config as settings
from memory.schemas import ConversationMessage

from conftest import (
    ExplodingClassifier,
    ScriptedClassifier,
    StaticAgent,
    StreamingAgent,
    StringAgent,
    RaisingAgent,
)

USER, SESSION = "user-1", "session-1"


def _pick(agent_id, confidence=0.9, text="x"):
    return ClassifierResult(agent_id, confidence, text)


class TestRouting:
    def test_two_turn_follow_up_stays_with_agent(
        self, make_orchestrator, storage, keyword_classifier, billing_agent, tech_agent
    ):
        orchestrator = make_orchestrator(keyword_classifier, billing_agent, tech_agent)

        first = orchestrator.route_request("My app keeps crashing", USER, SESSION)
        second = orchestrator.route_request("Yes please", USER, SESSION)

        assert first.metadata.agent_id == "tech-support-agent"
        assert second.metadata.agent_id == "tech-support-agent"
        assert billing_agent.calls == []
        assert len(tech_agent.calls) == 2

        history = storage.fetch_chat(USER, SESSION)
        assert [(m.role, m.agent_id) for m in history] == [
            ("user", None),
            ("assistant", "tech-support-agent"),
            ("user", None),
            ("assistant", "tech-support-agent"),
        ]

    def test_topic_change_switches_agent(
        self, make_orchestrator, keyword_classifier, billing_agent, tech_agent
    ):
        orchestrator = make_orchestrator(keyword_classifier, billing_agent, tech_agent)

        orchestrator.route_request("My login fails", USER, SESSION)
        response = orchestrator.route_request("Also, why was I charged twice?", USER, SESSION)

        assert response.metadata.agent_id == "billing-agent"

    def test_reply_and_metadata(self, make_orchestrator, billing_agent):
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("billing-agent")), billing_agent)

        response = orchestrator.route_request(
            "Where is my invoice?", USER, SESSION, additional_params={"locale": "en"})

        assert response.ok
        assert response.streaming is False
        assert response.output == billing_agent.reply
        assert response.metadata.agent_name == "Billing Agent"
        assert response.metadata.user_input == "Where is my invoice?"
        assert response.metadata.additional_params == {"locale": "en"}
        assert billing_agent.calls[0]["additional_params"] == {"locale": "en"}

    def test_agent_receives_prior_history(self, make_orchestrator, billing_agent):
        classifier = ScriptedClassifier(_pick("billing-agent"), _pick("billing-agent"))
        orchestrator = make_orchestrator(classifier, billing_agent)

        orchestrator.route_request("first", USER, SESSION)
        orchestrator.route_request("second", USER, SESSION)

        assert billing_agent.calls[0]["history"] == []
        assert [m.content for m in billing_agent.calls[1]["history"]] == ["first", billing_agent.reply]

    def test_sessions_are_isolated(self, make_orchestrator, storage, billing_agent):
        classifier = ScriptedClassifier(_pick("billing-agent"), _pick("billing-agent"))
        orchestrator = make_orchestrator(classifier, billing_agent)

        orchestrator.route_request("a", USER, "s-a")
        orchestrator.route_request("b", USER, "s-b")

        assert len(storage.fetch_chat(USER, "s-a")) == 2
        assert len(storage.fetch_chat(USER, "s-b")) == 2

    def test_save_chat_false_leaves_history_unchanged(self, make_orchestrator, storage):
        agent = StaticAgent("Quiet Agent", save_chat=False)
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("quiet-agent")), agent)

        response = orchestrator.route_request("hello", USER, SESSION)

        assert response.ok
        assert storage.fetch_chat(USER, SESSION) == []

    def test_history_retention(self, make_orchestrator, storage, billing_agent):
        classifier = ScriptedClassifier(*[_pick("billing-agent")] * 3)
        orchestrator = make_orchestrator(classifier, billing_agent, max_message_pairs_per_session=2)

        for text in ("one", "two", "three"):
            orchestrator.route_request(text, USER, SESSION)

        history = storage.fetch_chat(USER, SESSION)
        assert len(history) == 4
        assert history[0].content == "two"


class TestFallback:
    def test_unknown_goes_to_default_agent(self, make_orchestrator, billing_agent, tech_agent):
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("unknown", 0.2)), billing_agent, tech_agent,
            default_agent_id="tech-support-agent",
        )

        response = orchestrator.route_request("meaning of life?", USER, SESSION)

        assert response.ok
        assert response.metadata.agent_id == "tech-support-agent"
        assert billing_agent.calls == []

    def test_default_agent_is_first_registered(self, make_orchestrator, billing_agent, tech_agent):
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("unknown")), billing_agent, tech_agent)

        response = orchestrator.route_request("?", USER, SESSION)

        assert response.metadata.agent_id == "billing-agent"

    def test_unregistered_pick_goes_to_fallback(self, make_orchestrator, billing_agent):
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("weather-agent")), billing_agent)
        assert orchestrator.route_request("rain?", USER, SESSION).metadata.agent_id == "billing-agent"

    def test_low_confidence_goes_to_fallback(self, make_orchestrator, billing_agent, tech_agent):
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("tech-support-agent", 0.3)), billing_agent, tech_agent,
            min_confidence=0.5,
        )

        response = orchestrator.route_request("hmm", USER, SESSION)

        assert response.metadata.agent_id == "billing-agent"
        assert tech_agent.calls == []

    def test_no_agent_mode(self, make_orchestrator, storage, billing_agent):
        config_message = "No one can help with that."
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("unknown")), billing_agent,
            fallback_mode="no_agent", no_selected_agent_message=config_message,
        )

        response = orchestrator.route_request("meaning of life?", USER, SESSION)

        assert response.ok
        assert response.output == config_message
        assert response.metadata.agent_id == NO_AGENT_ID
        assert billing_agent.calls == []
        assert storage.fetch_chat(USER, SESSION) == []

    def test_none_mode_reports_unresolved(self, make_orchestrator, storage, billing_agent):
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("unknown")), billing_agent, fallback_mode=FallbackMode.NONE)

        response = orchestrator.route_request("meaning of life?", USER, SESSION)

        assert response.error == "UnresolvedAgentError"
        assert billing_agent.calls == []
        assert storage.fetch_chat(USER, SESSION) == []


class TestFailures:
    def test_malformed_classification(self, make_orchestrator, storage, mock_llm, tool_call, billing_agent):
        mock_llm.bind_tools.return_value.invoke.return_value = tool_call(
            {"userinput": "hi", "selected_agent": "billing-agent", "confidence": "very"})
        orchestrator = make_orchestrator(LLMClassifier(mock_llm), billing_agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.error == "ClassificationSchemaError"
        assert response.output == OrchestratorConfig().classification_error_message
        assert billing_agent.calls == []
        assert storage.fetch_chat(USER, SESSION) == []

    def test_classification_missing_selected_agent(
        self, make_orchestrator, storage, mock_llm, tool_call, billing_agent
    ):
        mock_llm.bind_tools.return_value.invoke.return_value = tool_call(
            {"userinput": "hi", "confidence": 0.8})
        orchestrator = make_orchestrator(LLMClassifier(mock_llm), billing_agent)
        storage.save_messages(USER, SESSION, [
            ConversationMessage.user("earlier"),
            ConversationMessage.assistant("noted", agent_id="billing-agent"),
        ])
        before = storage.fetch_chat(USER, SESSION)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.error == "ClassificationSchemaError"
        assert billing_agent.calls == []
        assert storage.fetch_chat(USER, SESSION) == before

    def test_unsupported_additional_params(self, make_orchestrator, storage, billing_agent):
        classifier = ScriptedClassifier(_pick("billing-agent"))
        orchestrator = make_orchestrator(classifier, billing_agent)

        response = orchestrator.route_request(
            "hi", USER, SESSION, additional_params={"tags": ["vip"], "locale": None})

        assert response.error == "InvalidRequestError"
        assert response.output == OrchestratorConfig().general_routing_error_message
        assert response.metadata.additional_params == {}
        assert classifier.prompts == []
        assert billing_agent.calls == []
        assert storage.fetch_chat(USER, SESSION) == []

    def test_classifier_exception(self, make_orchestrator, storage, billing_agent):
        orchestrator = make_orchestrator(ExplodingClassifier(), billing_agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.error == "ClassificationError"
        assert storage.fetch_chat(USER, SESSION) == []

    def test_agent_exception(self, make_orchestrator, storage):
        agent = RaisingAgent("Flaky Agent", "Fails")
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("flaky-agent")), agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.error == "AgentInvocationError"
        assert response.metadata.agent_id == "flaky-agent"
        assert response.output == OrchestratorConfig().general_routing_error_message
        assert storage.fetch_chat(USER, SESSION) == []

    def test_bare_string_reply_is_malformed(self, make_orchestrator, storage):
        agent = StringAgent("Sloppy Agent", "Returns text")
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("sloppy-agent")), agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.error == "AgentInvocationError"
        assert storage.fetch_chat(USER, SESSION) == []

    def test_storage_failure_still_returns_reply(self, make_orchestrator, storage, billing_agent, monkeypatch):
        def _broken(*args, **kwargs):
            raise IOError("disk full")

        monkeypatch.setattr(storage, "save_messages", _broken)
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("billing-agent")), billing_agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.ok
        assert response.output == billing_agent.reply


class TestStreaming:
    def test_recorded_only_after_completion(self, make_orchestrator, storage):
        agent = StreamingAgent("Stream Agent", ["Hel", "lo ", "there"])
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("stream-agent")), agent)

        response = orchestrator.route_request("hi", USER, SESSION)

        assert response.streaming is True
        assert isinstance(response.output, OutputAccumulator)
        assert storage.fetch_chat(USER, SESSION) == []

        assert list(response.output) == ["Hel", "lo ", "there"]

        history = storage.fetch_chat(USER, SESSION)
        assert [m.content for m in history] == ["hi", "Hello there"]
        assert history[1].agent_id == "stream-agent"

    def test_failed_stream_not_recorded(self, make_orchestrator, storage):
        agent = StreamingAgent("Stream Agent", ["partial"], fail_with=ConnectionError("reset"))
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("stream-agent")), agent)

        response = orchestrator.route_request("hi", USER, SESSION)
        chunks = list(response.output)

        assert chunks == ["partial"]
        assert response.output.state is StreamState.FAILED
        assert response.output.error is not None
        assert storage.fetch_chat(USER, SESSION) == []

    def test_cancelled_stream_not_recorded(self, make_orchestrator, storage):
        agent = StreamingAgent("Stream Agent", ["a", "b", "c"])
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("stream-agent")), agent)

        it = iter(orchestrator.route_request("hi", USER, SESSION).output)
        next(it)
        it.close()

        assert storage.fetch_chat(USER, SESSION) == []


class TestRegistry:
    def test_no_agents_is_a_configuration_error(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("unknown")))
        with pytest.raises(RegistryConfigurationError):
            orchestrator.route_request("hi", USER, SESSION)

    def test_no_agents_allowed_in_no_agent_mode(self, make_orchestrator):
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("unknown")), fallback_mode="no_agent")
        assert orchestrator.route_request("hi", USER, SESSION).metadata.agent_id == NO_AGENT_ID

    def test_unregistered_default_agent_rejected(self, make_orchestrator, billing_agent):
        orchestrator = make_orchestrator(
            ScriptedClassifier(_pick("billing-agent")), billing_agent, default_agent_id="ghost")
        with pytest.raises(RegistryConfigurationError):
            orchestrator.validate()

    def test_add_agent_replaces_same_id(self, make_orchestrator):
        first = StaticAgent("Billing Agent", reply="old")
        second = StaticAgent("Billing Agent", reply="new")
        orchestrator = make_orchestrator(ScriptedClassifier(_pick("billing-agent")), first)

        orchestrator.add_agent(second)

        assert orchestrator.agents["billing-agent"] is second
        assert orchestrator.route_request("hi", USER, SESSION).output == "new"

    def test_get_all_agents(self, make_orchestrator, billing_agent, tech_agent):
        orchestrator = make_orchestrator(ScriptedClassifier(), billing_agent, tech_agent)
        assert orchestrator.get_all_agents() == {
            "billing-agent": {"name": "Billing Agent", "description": billing_agent.description},
            "tech-support-agent": {"name": "Tech Support Agent", "description": tech_agent.description},
        }

    def test_set_default_agent(self, make_orchestrator, billing_agent, tech_agent):
        orchestrator = make_orchestrator(ScriptedClassifier(), billing_agent, tech_agent)

        orchestrator.set_default_agent("Tech Support Agent")

        assert orchestrator.get_default_agent() is tech_agent
        with pytest.raises(RegistryConfigurationError):
            orchestrator.set_default_agent("ghost")

    def test_set_classifier_and_classify_request(self, make_orchestrator, billing_agent):
        orchestrator = make_orchestrator(ScriptedClassifier(), billing_agent)
        replacement = ScriptedClassifier(_pick("billing-agent", 0.7))

        orchestrator.set_classifier(replacement)
        result = orchestrator.classify_request("hi", USER, SESSION)

        assert result.selected_agent_id == "billing-agent"
        assert len(replacement.prompts) == 1


class TestOrchestratorConfig:
    def test_invalid_fallback_mode(self):
        with pytest.raises(ValueError):
            OrchestratorConfig(fallback_mode="shrug")

    def test_invalid_min_confidence(self):
        with pytest.raises(ValueError):
            OrchestratorConfig(min_confidence=1.5)

    def test_history_size_is_twice_pairs(self):
        assert OrchestratorConfig(max_message_pairs_per_session=5).max_history_size == 10
        assert OrchestratorConfig().max_history_size is None

    def test_loaded_from_settings(self):
        loaded = settings.load_orchestrator_config()

        assert isinstance(loaded, OrchestratorConfig)
        assert loaded.fallback_mode is FallbackMode(settings.FALLBACK_MODE)
        assert loaded.max_message_pairs_per_session == settings.MAX_MESSAGE_PAIRS_PER_SESSION
        assert loaded.no_selected_agent_message == settings.NO_SELECTED_AGENT_MESSAGE

    def test_shared_config_not_changed_by_set_default_agent(self, billing_agent, tech_agent):
        shared = OrchestratorConfig()
        first = AgentOrchestrator(ScriptedClassifier(), config=shared, agents=[billing_agent, tech_agent])
        second = AgentOrchestrator(ScriptedClassifier(), config=shared, agents=[billing_agent, tech_agent])

        first.set_default_agent("tech-support-agent")

        assert first.get_default_agent() is tech_agent
        assert second.get_default_agent() is billing_agent
        assert shared.default_agent_id is None
