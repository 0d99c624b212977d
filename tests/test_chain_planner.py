"""Tests for intent classification and chain planning."""
import pytest

from promptchain.domain.models.chain_models import (
    AUTO_DETECT_TOOL, LIST_RESOURCES, LIST_TOOLS, Complexity, ConditionType, StepType
)
from promptchain.domain.models.context_models import ContextRetrievalResult, Message, MessageRole
from promptchain.domain.orchestration.core.chain_planner import ChainPlanner
from promptchain.domain.orchestration.intent import RegexIntentClassifier


@pytest.fixture
def planner():
    return ChainPlanner()


@pytest.fixture
def context():
    return ContextRetrievalResult(
        relevant_messages=[Message(role=MessageRole.USER, content="earlier question")]
    )


class TestIntentClassifier:
    """Lexical intent judgements."""

    @pytest.mark.parametrize("query,expected", [
        ("Create a user named Ada", True),
        ("fetch my invoices", True),
        ("Tell me a joke", False),
        ("What is the weather like", False),
    ])
    def test_requires_tools(self, query, expected):
        assert RegexIntentClassifier().requires_tools(query) is expected

    @pytest.mark.parametrize("query,expected", [
        ("hello", Complexity.SIMPLE),
        ("how to reset my password", Complexity.MEDIUM),
        ("Compare the two pricing plans step by step", Complexity.COMPLEX),
    ])
    def test_classify_complexity(self, query, expected):
        assert RegexIntentClassifier().classify_complexity(query) == expected

    def test_tags(self):
        tags = RegexIntentClassifier().extract_tags("Help me create an API key")

        assert tags == ["data", "help", "creation"]

    def test_priority(self):
        classifier = RegexIntentClassifier()

        assert classifier.priority("urgent: the site is down") == 1
        assert classifier.priority("a quick question") == 2
        assert classifier.priority("whenever you have time") == 3


class TestPlanSteps:
    """Step layouts per complexity."""

    def test_simple_layout(self, planner, context):
        steps = planner.plan_steps("hello there", Complexity.SIMPLE, context)

        assert [s.id for s in steps] == ["context_analysis", "direct_response"]
        assert steps[1].dependencies == ["context_analysis"]
        assert steps[1].type == StepType.SYNTHESIS
        assert "earlier question" in steps[0].prompt

    def test_medium_without_tools(self, planner, context):
        steps = planner.plan_steps("how to write a haiku", Complexity.MEDIUM, context)

        assert [s.id for s in steps] == ["context_analysis", "enhanced_response"]
        assert steps[1].timeout == 20000

    def test_medium_with_tools(self, planner, context):
        steps = planner.plan_steps("create a user named Ada", Complexity.MEDIUM, context)
        by_id = {s.id: s for s in steps}

        assert [s.id for s in steps] == ["context_analysis", "tool_selection", "mcp_execution", "result_synthesis"]
        assert by_id["tool_selection"].tool_operations[0].tool_name == LIST_TOOLS
        assert by_id["tool_selection"].tool_operations[0].required is True
        assert by_id["mcp_execution"].type == StepType.MCP_CALL
        assert by_id["mcp_execution"].tool_operations[0].tool_name == AUTO_DETECT_TOOL
        assert by_id["result_synthesis"].dependencies == ["mcp_execution"]

    def test_complex_layout(self, planner, context):
        steps = planner.plan_steps("analyze our data pipeline in depth", Complexity.COMPLEX, context)
        by_id = {s.id: s for s in steps}

        assert [s.id for s in steps] == [
            "context_analysis",
            "problem_decomposition",
            "information_gathering",
            "reasoning_validation",
            "comprehensive_synthesis",
        ]
        assert by_id["reasoning_validation"].conditions[0].type == ConditionType.HAS_RESULT
        assert by_id["reasoning_validation"].conditions[0].target == "information_gathering"

        operations = by_id["information_gathering"].tool_operations
        assert [op.tool_name for op in operations] == [LIST_TOOLS, AUTO_DETECT_TOOL]
        assert not any(op.required for op in operations)
        assert operations[1].fallback.tool_name == LIST_RESOURCES

    def test_complex_without_tool_verbs_only_lists_tools(self, planner):
        operations = planner.information_operations("explain how tides work in depth")

        assert [op.tool_name for op in operations] == [LIST_TOOLS]


class TestMetadata:
    """Chain metadata derived from the plan."""

    def test_simple_metadata(self, planner, context):
        steps = planner.plan_steps("hello", Complexity.SIMPLE, context)
        metadata = planner.build_metadata("hello", Complexity.SIMPLE, steps)

        assert metadata.estimated_time == 25000
        assert metadata.total_steps == 2
        assert metadata.max_concurrency == 1
        assert metadata.priority == 3
        assert metadata.tags == []

    def test_complex_metadata(self, planner, context):
        query = "urgent: analyze the API data"
        steps = planner.plan_steps(query, Complexity.COMPLEX, context)
        metadata = planner.build_metadata(query, Complexity.COMPLEX, steps)

        assert metadata.max_concurrency == 2
        assert metadata.priority == 1
        assert metadata.tags == ["data"]
        assert metadata.estimated_time == 10000 + 15000 + 30000 + 15000 + 25000

    def test_missing_timeouts_use_default(self, planner, context):
        steps = planner.plan_steps("hello", Complexity.SIMPLE, context)
        for step in steps:
            step.timeout = None

        assert planner.estimate_execution_time(steps) == 2 * 15000
