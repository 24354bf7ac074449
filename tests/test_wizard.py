import unittest
from datetime import timedelta

from modrelay.errors import Forbidden, GatewayFailure, InvalidTransition, NotFound, StaleInteraction, ValidationError
from modrelay.events import ButtonAction, ButtonClick, StageSubmit, WizardStart
from modrelay.sessions import SessionStore, Stage
from modrelay.wizard import (
    DEFAULT_SENTINEL,
    NONE_SENTINEL,
    GiveawayAnnouncement,
    GiveawayWizard,
    parse_duration,
    validate_stage,
)

from tests.fakes import FakeDirectory, FakeGateway

U1 = 111111111111111111
U2 = 222222222222222222
GUILD = 1
CHANNEL = 50
ROLE = 60

BASIC = {"title": "Holiday Drop", "prize": "Gift Card", "winners": "3", "duration": "1d"}
ENTRY = {"membership": "7d", "min_messages": "10"}
CUSTOM = {"color": "#5865f2"}
MESSAGES = {}


class WizardTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.store = SessionStore()
        self.gateway = FakeGateway()
        self.directory = FakeDirectory()
        self.wizard = GiveawayWizard(
            self.store, self.gateway, self.directory,
            guild_id=GUILD, announcement_channel_id=CHANNEL, host_role_id=ROLE,
        )

    def run_to_ready(self, owner=U1):
        self.wizard.start(owner)
        self.wizard.submit(owner, owner, Stage.AWAITING_BASIC_INFO, BASIC)
        self.wizard.submit(owner, owner, Stage.AWAITING_ENTRY_REQUIREMENTS, ENTRY)
        self.wizard.submit(owner, owner, Stage.AWAITING_CUSTOMIZATION, CUSTOM)
        return self.wizard.submit(owner, owner, Stage.AWAITING_MESSAGES, MESSAGES)


class TestWizardTransitions(WizardTestBase):
    def test_basic_info_is_stored(self):
        self.wizard.start(U1)
        s = self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, BASIC)
        self.assertIs(s.stage, Stage.AWAITING_ENTRY_REQUIREMENTS)
        self.assertEqual(s.fields["title"], "Holiday Drop")
        self.assertEqual(s.fields["prize"], "Gift Card")
        self.assertEqual(s.fields["winners"], 3)
        self.assertEqual(s.fields["duration"], "1d")

    def test_winners_parsed_as_int(self):
        self.wizard.start(U1)
        s = self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, winners="5"))
        self.assertEqual(s.fields["winners"], 5)

    def test_non_numeric_winners_leaves_stage(self):
        self.wizard.start(U1)
        with self.assertRaises(ValidationError) as ctx:
            self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, winners="abc"))
        self.assertEqual(ctx.exception.field, "winners")
        s = self.store.get(U1)
        self.assertIs(s.stage, Stage.AWAITING_BASIC_INFO)
        self.assertEqual(s.fields, {})

    def test_out_of_range_winners_rejected(self):
        self.wizard.start(U1)
        for bad in ("0", "-1", "21"):
            with self.assertRaises(ValidationError):
                self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, winners=bad))
        self.assertIs(self.store.get(U1).stage, Stage.AWAITING_BASIC_INFO)

    def test_missing_required_field_rejected(self):
        self.wizard.start(U1)
        with self.assertRaises(ValidationError) as ctx:
            self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, title="   "))
        self.assertEqual(ctx.exception.field, "title")

    def test_overlong_duration_rejected(self):
        self.wizard.start(U1)
        for bad in ("3000000d", "99999999999999999w", "91d"):
            with self.assertRaises(ValidationError) as ctx:
                self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, duration=bad))
            self.assertEqual(ctx.exception.field, "duration")
        self.assertIs(self.store.get(U1).stage, Stage.AWAITING_BASIC_INFO)
        s = self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, duration="90d"))
        self.assertEqual(s.fields["duration"], "90d")

    def test_bad_duration_rejected(self):
        self.wizard.start(U1)
        with self.assertRaises(ValidationError):
            self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, duration="tomorrow"))

    def test_stale_stage_submission_does_not_mutate(self):
        self.wizard.start(U1)
        self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, BASIC)
        before = dict(self.store.get(U1).fields)
        with self.assertRaises(StaleInteraction):
            self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, title="Again"))
        with self.assertRaises(StaleInteraction):
            self.wizard.submit(U1, U1, Stage.AWAITING_CUSTOMIZATION, CUSTOM)
        s = self.store.get(U1)
        self.assertEqual(s.fields, before)
        self.assertIs(s.stage, Stage.AWAITING_ENTRY_REQUIREMENTS)

    def test_other_user_is_forbidden(self):
        self.wizard.start(U1)
        with self.assertRaises(Forbidden):
            self.wizard.submit(U1, U2, Stage.AWAITING_BASIC_INFO, BASIC)
        s = self.store.get(U1)
        self.assertIs(s.stage, Stage.AWAITING_BASIC_INFO)
        self.assertEqual(s.fields, {})

    def test_submit_without_session_is_not_found(self):
        with self.assertRaises(NotFound):
            self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, BASIC)

    def test_new_start_resets_progress(self):
        self.wizard.start(U1)
        self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, BASIC)
        self.wizard.start(U1)
        self.assertEqual(len(self.store), 1)
        self.assertIs(self.store.get(U1).stage, Stage.AWAITING_BASIC_INFO)
        with self.assertRaises(StaleInteraction):
            self.wizard.submit(U1, U1, Stage.AWAITING_ENTRY_REQUIREMENTS, ENTRY)

    def test_open_form_checks_stage(self):
        self.wizard.start(U1)
        form = self.wizard.open_form(U1, U1, Stage.AWAITING_BASIC_INFO)
        self.assertEqual([f.key for f in form.fields], ["title", "prize", "winners", "duration"])
        with self.assertRaises(StaleInteraction):
            self.wizard.open_form(U1, U1, Stage.AWAITING_MESSAGES)
        with self.assertRaises(Forbidden):
            self.wizard.open_form(U1, U2, Stage.AWAITING_BASIC_INFO)

    def test_optional_fields_get_sentinels(self):
        self.run_to_ready()
        ann = self.wizard.preview(U1, U1)
        self.assertEqual(ann.roles, NONE_SENTINEL)
        self.assertEqual(ann.custom_entry, NONE_SENTINEL)
        self.assertEqual(ann.thumbnail, NONE_SENTINEL)
        self.assertEqual(ann.banner, NONE_SENTINEL)
        self.assertEqual(ann.button_text, DEFAULT_SENTINEL)
        self.assertEqual(ann.start_message, DEFAULT_SENTINEL)
        self.assertEqual(ann.winner_message, DEFAULT_SENTINEL)
        self.assertEqual(ann.entry_confirm_message, DEFAULT_SENTINEL)
        for value in ann.as_dict()["requirements"].values():
            self.assertNotEqual(str(value).strip(), "")

    def test_cancel_discards_session(self):
        self.wizard.start(U1)
        self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, BASIC)
        with self.assertRaises(Forbidden):
            self.wizard.cancel(U1, U2)
        self.wizard.cancel(U1, U1)
        self.assertNotIn(U1, self.store)
        with self.assertRaises(NotFound):
            self.wizard.cancel(U1, U1)


class TestWizardConfirm(WizardTestBase):
    async def test_confirm_publishes_grants_and_removes(self):
        self.run_to_ready()
        result = await self.wizard.confirm(U1, U1)
        self.assertEqual(len(self.gateway.posts), 1)
        channel, ann = self.gateway.posts[0]
        self.assertEqual(channel, CHANNEL)
        self.assertIsInstance(ann, GiveawayAnnouncement)
        self.assertEqual(ann.title, "Holiday Drop")
        self.assertEqual(ann.color, "#5865F2")
        self.assertEqual(ann.host_id, U1)
        self.assertEqual(result.message_id, 9001)
        self.assertTrue(result.role_granted)
        self.assertEqual(self.directory.grants, [(GUILD, U1, ROLE)])
        self.assertNotIn(U1, self.store)

    async def test_second_confirm_is_not_found(self):
        self.run_to_ready()
        await self.wizard.confirm(U1, U1)
        with self.assertRaises(NotFound):
            await self.wizard.confirm(U1, U1)
        self.assertEqual(len(self.gateway.posts), 1)

    async def test_confirm_before_ready_is_stale(self):
        self.wizard.start(U1)
        with self.assertRaises(StaleInteraction):
            await self.wizard.confirm(U1, U1)
        self.assertIn(U1, self.store)
        self.assertEqual(self.gateway.posts, [])

    async def test_confirm_by_other_user_is_forbidden(self):
        self.run_to_ready()
        with self.assertRaises(Forbidden):
            await self.wizard.confirm(U1, U2)
        self.assertIn(U1, self.store)

    async def test_post_failure_reported_and_session_removed(self):
        self.run_to_ready()
        self.gateway.fail_post = True
        with self.assertRaises(GatewayFailure):
            await self.wizard.confirm(U1, U1)
        self.assertNotIn(U1, self.store)
        self.assertEqual(self.directory.grants, [])

    async def test_role_failure_does_not_block_announcement(self):
        self.run_to_ready()
        self.directory.fail_grant = True
        with self.assertLogs("modrelay.wizard", level="ERROR"):
            result = await self.wizard.confirm(U1, U1)
        self.assertFalse(result.role_granted)
        self.assertEqual(len(self.gateway.posts), 1)
        self.assertNotIn(U1, self.store)

    async def test_no_host_role_configured(self):
        self.wizard.host_role_id = None
        self.run_to_ready()
        result = await self.wizard.confirm(U1, U1)
        self.assertFalse(result.role_granted)
        self.assertEqual(self.directory.grants, [])

    async def test_unrenderable_duration_keeps_session(self):
        self.wizard.max_duration_seconds = 10 ** 12
        self.wizard.start(U1)
        self.wizard.submit(U1, U1, Stage.AWAITING_BASIC_INFO, dict(BASIC, duration="3000000d"))
        self.wizard.submit(U1, U1, Stage.AWAITING_ENTRY_REQUIREMENTS, ENTRY)
        self.wizard.submit(U1, U1, Stage.AWAITING_CUSTOMIZATION, CUSTOM)
        self.wizard.submit(U1, U1, Stage.AWAITING_MESSAGES, MESSAGES)
        with self.assertRaises(ValidationError):
            self.wizard.preview(U1, U1)
        with self.assertRaises(ValidationError):
            await self.wizard.confirm(U1, U1)
        self.assertIn(U1, self.store)
        self.assertEqual(self.gateway.posts, [])

    async def test_missing_channel_keeps_session(self):
        self.wizard.announcement_channel_id = None
        self.run_to_ready()
        with self.assertRaises(GatewayFailure):
            await self.wizard.confirm(U1, U1)
        self.assertIn(U1, self.store)


class TestWizardEvents(WizardTestBase):
    async def test_full_run_through_events(self):
        await self.wizard.handle(WizardStart(owner_id=U1))
        for stage, fields in (
            (Stage.AWAITING_BASIC_INFO, BASIC),
            (Stage.AWAITING_ENTRY_REQUIREMENTS, dict(ENTRY, roles="@Member")),
            (Stage.AWAITING_CUSTOMIZATION, dict(CUSTOM, thumbnail="https://example.com/t.png")),
            (Stage.AWAITING_MESSAGES, {"winner_message": "GG {winner}"}),
        ):
            form = await self.wizard.handle(ButtonClick(U1, U1, ButtonAction.CONTINUE, stage))
            self.assertIs(form.stage, stage)
            await self.wizard.handle(StageSubmit(U1, U1, stage, fields))
        result = await self.wizard.handle(ButtonClick(U1, U1, ButtonAction.CONFIRM))
        ann = result.announcement
        self.assertEqual(ann.roles, "@Member")
        self.assertEqual(ann.thumbnail, "https://example.com/t.png")
        self.assertEqual(ann.winner_message, "GG {winner}")
        self.assertEqual(ann.ends_at - ann.starts_at, timedelta(days=1))
        self.assertNotIn(U1, self.store)

    async def test_cancel_event(self):
        await self.wizard.handle(WizardStart(owner_id=U1))
        await self.wizard.handle(ButtonClick(U1, U1, ButtonAction.CANCEL))
        self.assertNotIn(U1, self.store)

    async def test_continue_without_stage_rejected(self):
        await self.wizard.handle(WizardStart(owner_id=U1))
        with self.assertRaises(ValidationError):
            await self.wizard.handle(ButtonClick(U1, U1, ButtonAction.CONTINUE))


class TestValidation(unittest.TestCase):
    def test_entry_requirements(self):
        values = validate_stage(Stage.AWAITING_ENTRY_REQUIREMENTS, {"membership": "Any", "min_messages": "0"})
        self.assertEqual(values, {"membership": "Any", "min_messages": 0, "roles": "None", "custom_entry": "None"})
        with self.assertRaises(ValidationError):
            validate_stage(Stage.AWAITING_ENTRY_REQUIREMENTS, {"membership": "Any", "min_messages": "-3"})

    def test_color_and_urls(self):
        with self.assertRaises(ValidationError):
            validate_stage(Stage.AWAITING_CUSTOMIZATION, {"color": "blue"})
        with self.assertRaises(ValidationError):
            validate_stage(Stage.AWAITING_CUSTOMIZATION, {"color": "#000000", "banner": "ftp://x"})
        values = validate_stage(Stage.AWAITING_CUSTOMIZATION, {"color": "abcdef", "button_text": "Join!"})
        self.assertEqual(values["color"], "#ABCDEF")
        self.assertEqual(values["button_text"], "Join!")

    def test_too_long_value_rejected(self):
        with self.assertRaises(ValidationError):
            validate_stage(Stage.AWAITING_BASIC_INFO, dict(BASIC, title="x" * 101))

    def test_unknown_keys_dropped(self):
        values = validate_stage(Stage.AWAITING_BASIC_INFO, dict(BASIC, color="#FFFFFF"))
        self.assertNotIn("color", values)

    def test_ready_stage_takes_no_form(self):
        with self.assertRaises(InvalidTransition):
            validate_stage(Stage.READY_TO_SUBMIT, {})

    def test_max_winners_is_configurable(self):
        self.assertEqual(validate_stage(Stage.AWAITING_BASIC_INFO, dict(BASIC, winners="50"), max_winners=50)["winners"], 50)

    def test_parse_duration(self):
        self.assertEqual(parse_duration("1w2d"), timedelta(days=9))
        self.assertEqual(parse_duration("90m"), timedelta(minutes=90))
        self.assertEqual(parse_duration("200d", max_seconds=None), timedelta(days=200))
        for bad in ("", "0h", "1y", "d1", "\u0661d"):
            with self.assertRaises(ValidationError):
                parse_duration(bad)


if __name__ == "__main__":
    unittest.main()
