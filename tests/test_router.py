"""Tests for the message router and its observers."""

import json

import pytest

from devlink.managers import ChatLog, CommandCatalog, EventLog, LogCategory, LogLevel, RepositoryCatalog
from devlink.protocol import RepoListMessage, Repository, UnrecognizedMessage
from devlink.session import MessageRouter, RouterCallbacks


@pytest.fixture
def router() -> MessageRouter:
    return MessageRouter(
        repositories=RepositoryCatalog(),
        commands=CommandCatalog(),
        chat=ChatLog(),
        events=EventLog(),
    )


def frame(**data) -> str:
    return json.dumps(data)


class TestRepositories:

    @pytest.mark.asyncio
    async def test_repo_list_replaces_collection(self, router):
        await router.handle_text(frame(type="repo_list", repositories=[{"name": "a", "path": "/src/a"}]))
        msg = await router.handle_text(frame(type="repo_list", repositories=[
            {"name": "b", "path": "/src/b"},
            {"name": "c", "path": "/src/c"},
        ]))

        assert isinstance(msg, RepoListMessage)
        assert [r.path for r in router.repositories.repositories] == ["/src/b", "/src/c"]
        assert router.chat.messages[-1].text == "📋 Received 2 repositories"
        assert router.chat.messages[-1].is_from_server

    @pytest.mark.asyncio
    async def test_same_name_different_paths_are_distinct(self, router):
        await router.handle_text(frame(type="repo_list", repositories=[
            {"name": "app", "path": "/work/app"},
            {"name": "app", "path": "/personal/app"},
        ]))

        repos = router.repositories
        assert len(repos) == 2
        assert repos.get("/work/app").name == "app"
        assert repos.get("/personal/app").name == "app"

    @pytest.mark.asyncio
    async def test_empty_list_logs_warning(self, router):
        await router.handle_text(frame(type="repo_list", repositories=[]))

        warnings = [e for e in router.events.entries if e.level == LogLevel.WARNING]
        assert warnings[0].message == "No repositories found"

    @pytest.mark.asyncio
    async def test_repo_selected_updates_selection(self, router):
        selected = []

        async def on_selected(repo):
            selected.append(repo)

        router.callbacks = RouterCallbacks(on_repository_selected=on_selected)

        await router.handle_text(frame(type="repo_selected", repository={"name": "a", "path": "/src/a"}))

        assert router.repositories.selected == Repository(name="a", path="/src/a")
        assert router.chat.messages[-1].text == "✅ Selected repository: a"
        assert selected == [Repository(name="a", path="/src/a")]
        assert router.events.by_category(LogCategory.REPOSITORY)

    @pytest.mark.asyncio
    async def test_list_callback_receives_repositories(self, router):
        received = []

        async def on_list(repos):
            received.append(repos)

        router.callbacks = RouterCallbacks(on_repository_list=on_list)
        await router.handle_text(frame(type="repo_list", repositories=[{"name": "a", "path": "/src/a"}]))

        assert received == [[Repository(name="a", path="/src/a")]]


class TestCommands:

    @pytest.mark.asyncio
    async def test_merged_list_is_predefined_then_custom(self, router):
        await router.handle_text(frame(
            type="commands_list",
            predefined_commands=[{"name": "a", "description": "first"}],
            custom_commands=[{"name": "b", "description": "second", "content": "do b"}],
        ))

        assert [c.name for c in router.commands.commands] == ["a", "b"]
        assert router.commands.get("b").content == "do b"
        assert "b" in router.chat.messages[-1].text

    @pytest.mark.asyncio
    async def test_custom_pool_reset_when_repository_changes(self, router):
        await router.handle_text(frame(type="repo_selected", repository={"name": "a", "path": "/src/a"}))
        await router.handle_text(frame(
            type="commands_list",
            predefined_commands=[{"name": "/help"}],
            custom_commands=[{"name": "/deploy"}],
        ))

        await router.handle_text(frame(type="repo_selected", repository={"name": "b", "path": "/src/b"}))

        assert router.commands.custom == []
        assert [c.name for c in router.commands.commands] == ["/help"]

    @pytest.mark.asyncio
    async def test_reselecting_same_repository_keeps_custom_pool(self, router):
        await router.handle_text(frame(type="repo_selected", repository={"name": "a", "path": "/src/a"}))
        await router.handle_text(frame(type="commands_list", predefined_commands=[], custom_commands=[{"name": "/x"}]))

        await router.handle_text(frame(type="repo_selected", repository={"name": "a", "path": "/src/a"}))

        assert [c.name for c in router.commands.custom] == ["/x"]

    @pytest.mark.asyncio
    async def test_commands_callback(self, router):
        received = []

        async def on_commands(commands):
            received.append([c.name for c in commands])

        router.callbacks = RouterCallbacks(on_commands=on_commands)
        await router.handle_text(frame(
            type="commands_list",
            predefined_commands=[{"name": "a"}],
            custom_commands=[{"name": "b"}],
        ))

        assert received == [["a", "b"]]


class TestChatAndErrors:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"message": "boom"}, {"error": "boom"}])
    async def test_error_surfaces_detail(self, router, payload):
        await router.handle_text(frame(type="error", **payload))

        assert router.chat.messages[-1].text == "❌ Error: boom"
        assert router.events.entries[-1].level == LogLevel.ERROR

    @pytest.mark.asyncio
    async def test_response_text_verbatim(self, router):
        await router.handle_text(frame(type="response", text="Done.\nAll tests pass."))

        assert router.chat.messages[-1].text == "Done.\nAll tests pass."
        assert router.chat.messages[-1].is_from_server

    @pytest.mark.asyncio
    async def test_plain_text_is_chat(self, router):
        result = await router.handle_text("just words")

        assert result == "just words"
        assert router.chat.messages[-1].text == "just words"

    @pytest.mark.asyncio
    async def test_json_without_type_is_chat(self, router):
        text = '{"content": "hello"}'
        await router.handle_text(text)

        assert router.chat.messages[-1].text == text

    @pytest.mark.asyncio
    async def test_unknown_type_is_ignored(self, router):
        msg = await router.handle_text(frame(type="telemetry", value=1))

        assert isinstance(msg, UnrecognizedMessage)
        assert msg.type == "telemetry"
        assert len(router.chat) == 0

    @pytest.mark.asyncio
    async def test_malformed_known_type_is_ignored(self, router):
        msg = await router.handle_text(frame(type="repo_selected", repository="nope"))

        assert isinstance(msg, UnrecognizedMessage)
        assert router.repositories.selected is None
        assert len(router.chat) == 0

    @pytest.mark.asyncio
    async def test_stray_status_frame_is_ignored(self, router):
        assert await router.handle_text('{"status": "SOMETHING"}') is None
        assert len(router.chat) == 0

    def test_binary_frames_are_ignored(self, router):
        router.handle_binary(b"\x00\x01")

        assert len(router.chat) == 0
