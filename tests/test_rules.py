import unittest

from nested_virt_webhook.rules import NamespaceRule, RuleCompileError, RuleSet, matches, split_patterns


class SplitPatternsTests(unittest.TestCase):
    def test_trims_spaces_and_tabs(self) -> None:
        self.assertEqual(split_patterns(" ^vm-.* ,\t^test-.*\t"), ["^vm-.*", "^test-.*"])

    def test_drops_empty_segments(self) -> None:
        self.assertEqual(split_patterns("a,, ,\t,b,"), ["a", "b"])

    def test_accepts_structured_list(self) -> None:
        self.assertEqual(split_patterns([" a ", "", "b"]), ["a", "b"])

    def test_none_is_empty(self) -> None:
        self.assertEqual(split_patterns(None), [])


class ConfigMapRulesTests(unittest.TestCase):
    def test_parses_namespaces_and_patterns(self) -> None:
        rules = RuleSet.from_configmap_data({"namespace1": "^vm-.*, ^test-.*", "namespace2": ".*-prod$"})
        self.assertEqual(len(rules), 2)
        self.assertEqual(rules[0].namespace, "namespace1")
        self.assertEqual(len(rules[0].patterns), 2)
        self.assertEqual(rules[1].namespace, "namespace2")
        self.assertEqual(len(rules[1].patterns), 1)

    def test_skips_namespaces_without_patterns(self) -> None:
        rules = RuleSet.from_configmap_data({"empty": "", "blank": " , \t", "ok": "vm"})
        self.assertEqual([rule.namespace for rule in rules], ["ok"])

    def test_invalid_pattern_aborts(self) -> None:
        with self.assertRaises(RuleCompileError) as ctx:
            RuleSet.from_configmap_data({"test-namespace": "^vm-[.*, ^test-.*"})
        self.assertIn("^vm-[.*", str(ctx.exception))
        self.assertIn("test-namespace", str(ctx.exception))

    def test_non_string_patterns_abort(self) -> None:
        with self.assertRaises(RuleCompileError):
            RuleSet.from_configmap_data({"ns": 5})  # type: ignore[dict-item]

    def test_missing_data_is_an_error(self) -> None:
        with self.assertRaises(RuleCompileError):
            RuleSet.from_configmap_data(None)


class StructuredRulesTests(unittest.TestCase):
    def test_compiles_patterns(self) -> None:
        rules = RuleSet.from_rule_configs([{"namespace": "test-namespace", "patterns": ["^vm-.*", "^test-.*"]}])
        self.assertEqual(len(rules), 1)
        self.assertEqual(len(rules[0].patterns), 2)

    def test_invalid_pattern_is_skipped_with_warning(self) -> None:
        with self.assertLogs("nested_virt_webhook.rules", level="WARNING") as logs:
            rules = RuleSet.from_rule_configs(
                [{"namespace": "test-namespace", "patterns": ["^vm-[.*", "^test-.*"]}]
            )
        self.assertEqual(len(rules), 1)
        self.assertEqual(len(rules[0].patterns), 1)
        self.assertEqual(rules[0].patterns[0].pattern, "^test-.*")
        self.assertIn("^vm-[.*", logs.output[0])

    def test_scalar_patterns_are_skipped_with_warning(self) -> None:
        with self.assertLogs("nested_virt_webhook.rules", level="WARNING") as logs:
            rules = RuleSet.from_rule_configs(
                [{"namespace": "ns", "patterns": 5}, {"namespace": "dev", "patterns": ["^vm-"]}]
            )
        self.assertEqual([rule.namespace for rule in rules], ["dev"])
        self.assertIn("patterns must be a string or a list", logs.output[0])

    def test_no_rules(self) -> None:
        self.assertEqual(len(RuleSet.from_rule_configs(None)), 0)
        self.assertEqual(len(RuleSet.from_rule_configs([])), 0)

    def test_rule_with_only_invalid_patterns_is_dropped(self) -> None:
        with self.assertLogs("nested_virt_webhook.rules", level="WARNING"):
            rules = RuleSet.from_rule_configs([{"namespace": "ns", "patterns": ["("]}])
        self.assertEqual(len(rules), 0)


class MatchesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = RuleSet.from_rule_configs(
            [
                {"namespace": "namespace1", "patterns": ["^vm-.*", "^test-.*"]},
                {"namespace": "namespace2", "patterns": [".*-prod$"]},
            ]
        )

    def test_matches_within_namespace(self) -> None:
        self.assertTrue(self.rules.matches("namespace1", "vm-001"))
        self.assertTrue(self.rules.matches("namespace1", "test-abc"))
        self.assertFalse(self.rules.matches("namespace1", "other-vm"))
        self.assertTrue(self.rules.matches("namespace2", "my-vm-prod"))
        self.assertFalse(self.rules.matches("namespace2", "my-vm-dev"))

    def test_other_namespace_never_matches(self) -> None:
        self.assertFalse(self.rules.matches("unknown-namespace", "vm-001"))
        self.assertFalse(self.rules.matches("namespace2", "vm-001"))

    def test_patterns_are_not_anchored(self) -> None:
        rules = RuleSet.from_configmap_data({"ns": "vm-"})
        self.assertTrue(rules.matches("ns", "my-vm-1"))

    def test_matching_is_case_sensitive_and_untrimmed(self) -> None:
        rules = RuleSet.from_configmap_data({"ns": "^vm$"})
        self.assertFalse(rules.matches("ns", "VM"))
        self.assertFalse(rules.matches("ns", " vm"))
        self.assertFalse(rules.matches(" ns", "vm"))

    def test_rules_sharing_a_namespace_are_all_checked(self) -> None:
        rules = RuleSet.from_configmap_data({"ns": "^a"}).extend(RuleSet.from_configmap_data({"ns": "^b"}))
        self.assertEqual(len(rules), 2)
        self.assertTrue(rules.matches("ns", "a1"))
        self.assertTrue(rules.matches("ns", "b1"))
        self.assertFalse(rules.matches("ns", "c1"))

    def test_missing_rule_set_never_matches(self) -> None:
        self.assertFalse(matches(None, "namespace1", "vm-001"))
        self.assertTrue(matches(self.rules, "namespace1", "vm-001"))

    def test_empty_rule_set_never_matches(self) -> None:
        self.assertFalse(RuleSet().matches("namespace1", "vm-001"))

    def test_namespace_rule_is_immutable(self) -> None:
        rule = self.rules[0]
        self.assertIsInstance(rule, NamespaceRule)
        with self.assertRaises(AttributeError):
            rule.namespace = "other"  # type: ignore[misc]


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
