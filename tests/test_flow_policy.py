import unittest

from homeservice.errors import ValidationError
from homeservice.negotiation.flow_policy import (
    ACTION_LABELS,
    ENTITIES,
    FLOW_POLICY,
    INITIAL_STATUS,
    TRANSITIONS,
    can_transition,
    flow_meta,
    is_terminal,
    next_status,
)


class FlowPolicyTest(unittest.TestCase):
    def test_every_entity_has_transitions_and_policy(self) -> None:
        self.assertEqual(ENTITIES, ["service_request", "quote", "service_order", "bill"])
        for entity in ENTITIES:
            self.assertIn(entity, TRANSITIONS)
            self.assertIn(INITIAL_STATUS[entity], TRANSITIONS[entity])
            self.assertEqual(set(FLOW_POLICY[entity]), set(TRANSITIONS[entity]), f"policy mismatch in {entity}")

    def test_all_statuses_have_actions(self) -> None:
        for entity, status_map in FLOW_POLICY.items():
            for status_name, policy in status_map.items():
                actions = policy.get("allowed_actions") or []
                self.assertTrue(actions, f"no actions in {entity}:{status_name}")
                for action in actions:
                    self.assertIn(action, ACTION_LABELS)

    def test_primary_action_is_in_allowed_actions(self) -> None:
        for entity, status_map in FLOW_POLICY.items():
            for status_name, policy in status_map.items():
                primary_action = policy.get("primary_action")
                if primary_action:
                    self.assertIn(primary_action, policy.get("allowed_actions") or [], f"{entity}:{status_name}")

    def test_transition_targets_are_known_statuses(self) -> None:
        for entity, status_map in TRANSITIONS.items():
            for status_name, events in status_map.items():
                for event, target in events.items():
                    self.assertIn(target, status_map, f"{entity}:{status_name}:{event}")

    def test_terminal_statuses(self) -> None:
        self.assertTrue(is_terminal("quote", "accepted"))
        self.assertTrue(is_terminal("quote", "rejected"))
        self.assertTrue(is_terminal("bill", "paid"))
        self.assertTrue(is_terminal("service_order", "completed"))
        self.assertFalse(is_terminal("quote", "renegotiating"))
        self.assertFalse(is_terminal("bill", "disputed"))
        self.assertFalse(is_terminal("quote", "unknown"))

    def test_next_status_follows_the_negotiation(self) -> None:
        self.assertEqual(next_status("service_request", "pending", "send_quote"), "quote_sent")
        self.assertEqual(next_status("service_request", "quote_sent", "accept"), "accepted")
        self.assertEqual(next_status("quote", "renegotiating", "accept"), "accepted")
        self.assertEqual(next_status("bill", "disputed", "revise"), "pending")
        self.assertTrue(can_transition("service_request", "quote_sent", "send_quote"))
        self.assertFalse(can_transition("service_request", "pending", "accept"))

    def test_closed_statuses_report_dedicated_codes(self) -> None:
        cases = [
            ("service_request", "rejected", "send_quote", "request_not_open_for_quotes"),
            ("quote", "accepted", "counter", "quote_final_status"),
            ("service_order", "completed", "complete", "order_already_completed"),
            ("bill", "paid", "revise", "bill_already_paid"),
            ("service_request", "pending", "accept", "status_transition_invalid"),
        ]
        for entity, status, event, code in cases:
            with self.subTest(entity=entity, status=status, event=event):
                with self.assertRaises(ValidationError) as ctx:
                    next_status(entity, status, event)
                self.assertEqual(ctx.exception.code, code)

    def test_flow_meta_for_unknown_status(self) -> None:
        meta = flow_meta("bill", None)
        self.assertEqual(meta["allowed_actions"], [])
        self.assertIsNone(meta["primary_action"])
        disputed = flow_meta("bill", "disputed")
        self.assertEqual(disputed["primary_action"], "revise")
        self.assertEqual(disputed["status_label"], "Disputed")
        self.assertEqual(disputed["action_labels"]["revise"], "Revise bill")


if __name__ == "__main__":
    unittest.main()
