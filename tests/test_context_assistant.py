"""
Tests for the single-space assistant

The provider is scripted; the assertions are about what reaches the model
and how its answers are turned into results.
"""

import json

import pytest
import pytest_asyncio
from sqlalchemy import select

from app.db.models import AIMessage, ContextSpace, FeatureRequest
from app.errors import NotFound, StructuralError
from app.services.ai.context_assistant import ContextAssistantService, format_feature_list
from app.services.ai.global_assistant import GlobalAssistantService

from conftest import FakeFactory, FakeProvider


@pytest_asyncio.fixture
async def space(db_session, org):
    space = ContextSpace(organization_id=org.id, name="Checkout", description="Checkout flow", created_by="admin-1")
    db_session.add(space)
    await db_session.flush()
    db_session.add_all([
        FeatureRequest(context_space_id=space.id, title="Apple Pay", description="Wallet payments", created_by="member-1"),
        FeatureRequest(context_space_id=space.id, title="Pay with Apple", created_by="member-1"),
        FeatureRequest(context_space_id=space.id, title="Guest checkout", created_by="member-1"),
    ])
    await db_session.commit()
    return space


async def feature_ids(db_session, space):
    rows = (await db_session.execute(
        select(FeatureRequest).where(FeatureRequest.context_space_id == space.id).order_by(FeatureRequest.title)
    )).scalars().all()
    return {f.title: f.id for f in rows}


def assistant_with(db_session, reply, usage):
    provider = FakeProvider(reply=reply)
    return ContextAssistantService(db_session, factory=FakeFactory(provider), usage=usage), provider


class TestFeatureList:
    def test_format(self):
        features = [
            FeatureRequest(id="f1", title="One", description="First"),
            FeatureRequest(id="f2", title="Two"),
        ]
        assert format_feature_list(features) == "[f1] One\n  Description: First\n\n[f2] Two"


class TestAnalysis:
    """JSON-shaped tasks"""

    @pytest.mark.asyncio
    async def test_summary(self, db_session, space, org, usage):
        assistant, provider = assistant_with(db_session, "A checkout space.", usage)

        result = await assistant.generate_summary(space.id, "member-1", org.id)

        assert result.summary == "A checkout space."
        system, user = provider.chat_calls[0]
        assert system.role == "system"
        assert "# Context Space: Checkout" in user.content
        assert usage.log_usage.call_args.args[0].capability == "chat"

    @pytest.mark.asyncio
    async def test_duplicates_hydrated(self, db_session, space, org, usage):
        ids = await feature_ids(db_session, space)
        reply = json.dumps([{
            "reason": "Same wallet feature",
            "similarity": 0.95,
            "features": [ids["Apple Pay"], ids["Pay with Apple"], "made-up-id"],
        }])
        assistant, provider = assistant_with(db_session, reply, usage)

        result = await assistant.detect_duplicates(space.id, "member-1", org.id)

        assert len(result.groups) == 1
        assert [f.title for f in result.groups[0].features] == ["Apple Pay", "Pay with Apple"]
        prompt = provider.chat_calls[0][1].content
        assert f"[{ids['Apple Pay']}] Apple Pay\n  Description: Wallet payments" in prompt

    @pytest.mark.asyncio
    async def test_duplicates_need_two_features(self, db_session, org, usage):
        lonely = ContextSpace(organization_id=org.id, name="Lonely", created_by="admin-1")
        db_session.add(lonely)
        await db_session.flush()
        db_session.add(FeatureRequest(context_space_id=lonely.id, title="Only one", created_by="admin-1"))
        await db_session.commit()
        assistant, provider = assistant_with(db_session, "[]", usage)

        result = await assistant.detect_duplicates(lonely.id, "member-1", org.id)

        assert result.groups == []
        assert provider.chat_calls == []

    @pytest.mark.asyncio
    async def test_unparseable_reply_is_empty_result(self, db_session, space, org, usage):
        assistant, _ = assistant_with(db_session, "Sorry, I can't help with that.", usage)

        assert (await assistant.detect_duplicates(space.id, "member-1", org.id)).groups == []
        assert (await assistant.group_by_theme(space.id, "member-1", org.id)).themes == []
        assert (await assistant.identify_quick_wins(space.id, "member-1", org.id)).quickWins == []
        assert (await assistant.suggest_features(space.id, "member-1", org.id)).suggestions == []

    @pytest.mark.asyncio
    async def test_themes(self, db_session, space, org, usage):
        ids = await feature_ids(db_session, space)
        reply = "```json\n" + json.dumps([{
            "theme": "Payments", "description": "Ways to pay", "features": [ids["Apple Pay"]],
        }]) + "\n```"
        assistant, _ = assistant_with(db_session, reply, usage)

        result = await assistant.group_by_theme(space.id, "member-1", org.id)

        assert result.themes[0].theme == "Payments"
        assert result.themes[0].features[0].id == ids["Apple Pay"]

    @pytest.mark.asyncio
    async def test_quick_wins_drop_unknown_ids(self, db_session, space, org, usage):
        ids = await feature_ids(db_session, space)
        reply = json.dumps([
            {"id": ids["Guest checkout"], "reason": "Small change", "estimatedEffort": "low", "estimatedImpact": "high"},
            {"id": "ghost", "reason": "?", "estimatedEffort": "low", "estimatedImpact": "high"},
        ])
        assistant, _ = assistant_with(db_session, reply, usage)

        result = await assistant.identify_quick_wins(space.id, "member-1", org.id)

        assert [w.title for w in result.quickWins] == ["Guest checkout"]
        assert result.quickWins[0].estimatedEffort == "low"

    @pytest.mark.asyncio
    async def test_suggestions(self, db_session, space, org, usage):
        assistant, _ = assistant_with(db_session, '["Saved cards", "Order notes"]', usage)

        result = await assistant.suggest_features(space.id, "member-1", org.id)

        assert result.suggestions == ["Saved cards", "Order notes"]

    @pytest.mark.asyncio
    async def test_space_from_other_tenant_is_not_found(self, db_session, space, other_org, usage):
        assistant, provider = assistant_with(db_session, "x", usage)

        with pytest.raises(NotFound):
            await assistant.generate_summary(space.id, "outsider-1", other_org.id)
        assert provider.chat_calls == []


class TestScopedConversation:
    @pytest.mark.asyncio
    async def test_turns_are_persisted_and_replayed(self, db_session, space, org, usage):
        assistant, provider = assistant_with(
            db_session, lambda messages: f"reply to {messages[-1].content}", usage
        )
        started = await assistant.start_conversation(space.id, "member-1", org.id)

        first = await assistant.send_message(started.conversation_id, "member-1", org.id, "Hello")
        await assistant.send_message(started.conversation_id, "member-1", org.id, "And then?")

        assert first.response == "reply to Hello"
        second_call = provider.chat_calls[1]
        assert second_call[0].role == "system"
        assert "# Context Space: Checkout" in second_call[0].content
        assert [(m.role, m.content) for m in second_call[1:]] == [
            ("user", "Hello"),
            ("assistant", "reply to Hello"),
            ("user", "And then?"),
        ]

        conversation = await assistant.get_conversation(started.conversation_id, org.id)
        assert [m.role for m in conversation.messages] == ["user", "assistant", "user", "assistant"]
        logged = usage.log_usage.call_args.args[0]
        assert logged.conversation_id == started.conversation_id

    @pytest.mark.asyncio
    async def test_global_conversation_rejected(self, db_session, org, usage):
        assistant, _ = assistant_with(db_session, "x", usage)
        started = await GlobalAssistantService(
            db_session, factory=assistant.factory, usage=usage
        ).start_conversation("member-1", org.id)

        with pytest.raises(StructuralError):
            await assistant.send_message(started.conversation_id, "member-1", org.id, "Hi")

        messages = (await db_session.execute(select(AIMessage))).scalars().all()
        assert messages == []

    @pytest.mark.asyncio
    async def test_conversation_of_other_tenant_is_not_found(self, db_session, space, org, other_org, usage):
        assistant, _ = assistant_with(db_session, "x", usage)
        started = await assistant.start_conversation(space.id, "member-1", org.id)

        with pytest.raises(NotFound):
            await assistant.send_message(started.conversation_id, "outsider-1", other_org.id, "Hi")
        with pytest.raises(NotFound):
            await assistant.get_conversation(started.conversation_id, other_org.id)
