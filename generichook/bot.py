from typing import Any

from maubot import MessageEvent, Plugin
from maubot.handlers import command, event
from mautrix.errors import MatrixRequestError
from mautrix.types import EventType, StateEvent
from mautrix.util.config import BaseProxyConfig, ConfigUpdateHelper
import attr

from .config import GenericWebhooksConfig
from .connection import ConnectionContext
from .errors import ApiError
from .identity import IdentityDirectory
from .manager import ConnectionManager
from .sender import MessageSenderClient
from .state import CANONICAL_EVENT_TYPE, LEGACY_EVENT_TYPE
from .store import RoomStore, state_event_type

# ---------------- config ----------------

class PluginConfig(BaseProxyConfig):
    def do_update(self, h: ConfigUpdateHelper) -> None:
        # generic webhooks
        h.copy("generic.enabled")
        h.copy("generic.allow_js_transformation_functions")
        h.copy("generic.user_id_prefix")
        h.copy("generic.url_prefix")
        # appservice access, only needed for per-hook senders
        h.copy("appservice.homeserver")
        h.copy("appservice.as_token")
        # admin
        h.copy("adminlist")

# ---------------- plugin ----------------

class GenericHookBot(Plugin):
    config: PluginConfig
    manager: ConnectionManager

    @classmethod
    def get_config_class(cls):
        return PluginConfig

    async def start(self) -> None:
        self.config.load_and_update()
        generic = GenericWebhooksConfig.from_mapping(self.config["generic"] or {})
        identity = IdentityDirectory(
            self.client,
            homeserver=self.config["appservice.homeserver"],
            as_token=self.config["appservice.as_token"],
            client_session=self.http,
            log=self.log.getChild("identity"),
        )
        if generic.user_id_prefix and not identity.can_puppet:
            self.log.error("generic.user_id_prefix needs appservice.homeserver and appservice.as_token, ignoring it")
            generic = attr.evolve(generic, user_id_prefix=None)
        self.manager = ConnectionManager(ConnectionContext(
            store=RoomStore(self.client),
            message_client=MessageSenderClient(identity),
            identity=identity,
            config=generic,
        ))
        if generic.enabled:
            await self._load_connections()
        self.log.info(f"Webhook URL prefix: {generic.parsed_url_prefix}")

    async def _load_connections(self) -> None:
        total = 0
        for room_id in await self.client.get_joined_rooms():
            try:
                events = await self.client.get_state(room_id)
            except MatrixRequestError as e:
                self.log.warning(f"Failed to fetch state of {room_id}: {e}")
                continue
            total += await self.manager.load_room_state(room_id, events)
        self.log.info(f"Loaded {total} webhook connections")

    # ---- delivery (called by the HTTP listener) ----

    async def deliver(self, hook_id: str, data: Any) -> bool:
        """Hand a parsed webhook payload to its connection. Raises ApiError for unknown hooks."""
        return await self.manager.on_generic_hook(hook_id, data)

    # ---- state events ----

    @event.on(state_event_type(CANONICAL_EVENT_TYPE))
    async def on_hook_state(self, evt: StateEvent) -> None:
        await self._handle_state(evt)

    @event.on(state_event_type(LEGACY_EVENT_TYPE))
    async def on_legacy_hook_state(self, evt: StateEvent) -> None:
        await self._handle_state(evt)

    async def _handle_state(self, evt: StateEvent) -> None:
        if not self.manager.ctx.config.enabled:
            return
        try:
            await self.manager.on_state_event(evt.room_id, evt)
        except ApiError as e:
            self.log.warning(f"Rejected webhook state {evt.state_key} in {evt.room_id} from {evt.sender}: {e.message}")

    # ---- room upgrade (tombstone) ----
    @event.on(EventType.ROOM_TOMBSTONE)
    async def tombstone(self, evt: StateEvent) -> None:
        new_room = evt.content.replacement_room
        if not new_room or not self.manager.connections_for_room(evt.room_id):
            return
        # Hooks live in this room's state, so they do not follow the upgrade
        await self.client.send_notice(
            evt.room_id,
            f"Room was upgraded to {new_room}. Webhooks stay attached to this room, "
            "add new ones in the upgraded room with `!hook add <name>`."
        )

    # ---- commands ----

    @command.new(name="hook", require_subcommand=True, help="Manage generic webhooks in this room")
    async def hook(self, evt: MessageEvent) -> None:
        await self.hook_help(evt)

    @hook.subcommand(name="help", help="Show help")
    async def hook_help(self, evt: MessageEvent) -> None:
        text = (
            "**Generic webhooks**\n\n"
            "- `!hook list` — List webhooks in this room\n"
            "- `!hook add <name>` — Create a webhook and show its URL\n"
            "- `!hook show <name>` — Show a webhook's URL and config\n"
            "- `!hook remove <name>` — Disable a webhook\n"
            "- `!hook transform <name> reset` — Remove the transformation function\n"
            "- `!hook transform <name>` followed by the script on the next lines — Set it\n"
        )
        await self.client.send_markdown(evt.room_id, text)

    @hook.subcommand(name="list", help="List webhooks in this room")
    async def hook_list(self, evt: MessageEvent) -> None:
        conns = self.manager.connections_for_room(evt.room_id)
        if not conns:
            await evt.reply("No webhooks here yet. Use `!hook add <name>`.")
            return
        lines = [
            f"- **{c.state.name}** — {'transformation function' if c.has_transformation else 'default formatting'}"
            for c in conns
        ]
        await self.client.send_markdown(evt.room_id, "\n".join(lines))

    @hook.subcommand(name="add", help="Create a webhook: !hook add <name>")
    @command.argument("name", required=True, pass_raw=True)
    async def hook_add(self, evt: MessageEvent, name: str) -> None:
        if not await self._check_admin_here(evt):
            return
        try:
            conn = await self.manager.provision(evt.room_id, evt.sender, {"name": name.strip()})
        except ApiError as e:
            await evt.reply(f"❌ {e.message}")
            return
        secrets = conn.get_provisioner_details(show_secrets=True)["secrets"]
        await self.client.send_markdown(
            evt.room_id,
            "🔗 **Webhook created**\n\n"
            f"`POST {secrets['url']}`\n\n"
            "Send JSON with a `text` field, or any JSON/string to have it dumped as-is."
        )

    @hook.subcommand(name="show", help="Show a webhook: !hook show <name>")
    @command.argument("name", required=True, pass_raw=True)
    async def hook_show(self, evt: MessageEvent, name: str) -> None:
        if not await self._check_admin_here(evt):
            return
        conn = self.manager.find_by_name(evt.room_id, name.strip())
        if not conn:
            await evt.reply("No such webhook.")
            return
        details = conn.get_provisioner_details(show_secrets=True)
        script = details["config"]["transformationFunction"]
        text = (
            f"**{details['config']['name']}**\n"
            f"- URL: `{details['secrets']['url']}`\n"
            f"- Sender: `{conn.get_user_id()}`\n"
            f"- Priority: {conn.priority}\n"
        )
        if script:
            text += f"- Transformation function:\n```jinja\n{script}\n```"
        await self.client.send_markdown(evt.room_id, text)

    @hook.subcommand(name="remove", help="Disable a webhook: !hook remove <name>")
    @command.argument("name", required=True, pass_raw=True)
    async def hook_remove(self, evt: MessageEvent, name: str) -> None:
        if not await self._check_admin_here(evt):
            return
        try:
            conn = await self.manager.remove(evt.room_id, name.strip())
        except ApiError as e:
            await evt.reply(f"❌ {e.message}")
            return
        await evt.reply(f"🚫 Webhook **{conn.state.name}** disabled.")

    @hook.subcommand(name="transform", help="Set or reset a webhook's transformation function")
    @command.argument("args", required=True, pass_raw=True)
    async def hook_transform(self, evt: MessageEvent, args: str) -> None:
        if not await self._check_admin_here(evt):
            return
        # First line names the hook, the rest is the script; keep its newlines
        head, _, script = args.partition("\n")
        head = head.strip()
        reset = head.endswith(" reset")
        name = head[: -len(" reset")].strip() if reset else head
        conn = self.manager.find_by_name(evt.room_id, name)
        if not conn:
            await evt.reply("No such webhook.")
            return
        script = "" if reset else script.strip("\n")
        if not reset and not script:
            await evt.reply("Usage: `!hook transform <name>` with the script on the following lines")
            return
        config = {"name": conn.state.name, "transformationFunction": script or None}
        if conn.state.priority is not None:
            config["priority"] = conn.state.priority
        try:
            await conn.provisioner_update_config(evt.sender, config)
        except ApiError as e:
            await evt.reply(f"❌ {e.message}")
            return
        await evt.reply("✅ Transformation function cleared." if reset else "✅ Transformation function saved.")

    async def _check_admin_here(self, evt: MessageEvent) -> bool:
        admins = set(self.config["adminlist"] or [])
        if not admins or evt.sender in admins:
            return True
        await evt.reply("Only bot admins can manage webhooks.")
        return False
