"""Tests for the macro pattern classifier."""

import unittest

from analysis.classifier import MacroClassifier, classify_unit
from analysis.models import (
    ConstantPayload,
    FunctionPayload,
    HazardKind,
    PatternTag,
    PointerPayload,
)
from core.engine_config import ClassConstantStyle, EngineConfig
from core.proposal_contract import Confidence
from preprocessor.directives import scan_translation_unit


def classify(text: str, config: EngineConfig = None, path: str = "unit.cpp"):
    stream = scan_translation_unit(path, text)
    _, _, results = classify_unit(stream, config)
    return {result.macro_name: result for result in results}


def hazard_kinds(result):
    return [hazard.kind for hazard in result.hazards]


class TestObjectLikeConstants(unittest.TestCase):
    """Object-like replacement lists that fold to typed constants."""

    def test_floating_constant_is_simple_constant(self):
        result = classify("#define ASPECT_RATIO 1.653\ndouble r = ASPECT_RATIO;\n")["ASPECT_RATIO"]
        self.assertEqual(result.tag, PatternTag.SIMPLE_CONSTANT)
        self.assertEqual(result.confidence, Confidence.HIGH)
        self.assertIsInstance(result.payload, ConstantPayload)
        self.assertEqual(result.payload.type_name, "double")
        self.assertEqual(result.payload.initializer, "1.653")
        self.assertIsNone(result.reason)
        self.assertEqual(result.definition_lines, (1,))

    def test_dependent_constant_folds_through_other_macro(self):
        results = classify(
            "#define WIDTH 80\n"
            "#define AREA (WIDTH * 2)\n"
            "int a = AREA;\n"
        )
        area = results["AREA"]
        self.assertEqual(area.tag, PatternTag.SIMPLE_CONSTANT)
        self.assertEqual(area.payload.value, 160)
        self.assertEqual(area.payload.type_name, "int")
        self.assertIn("references constant macro 'WIDTH'", area.evidence)

    def test_string_literal_is_pointer_constant(self):
        result = classify('#define AUTHOR "Scott Meyers"\nconst char *a = AUTHOR;\n')["AUTHOR"]
        self.assertEqual(result.tag, PatternTag.POINTER_CONSTANT)
        self.assertIsInstance(result.payload, PointerPayload)
        self.assertEqual(result.payload.char_type, "char")
        self.assertEqual(result.payload.pointer_type, "const char * const")
        self.assertEqual(result.payload.string_type, "std::string")

    def test_null_pointer_constant_has_no_pointee(self):
        result = classify("#define NOTHING nullptr\nvoid *p = NOTHING;\n")["NOTHING"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("no known pointee type", result.reason)

    def test_conditional_definition_is_medium(self):
        result = classify(
            "#ifdef FAST\n"
            "#define STEP 2\n"
            "#endif\n"
            "int s = STEP;\n"
        )["STEP"]
        self.assertEqual(result.tag, PatternTag.SIMPLE_CONSTANT)
        self.assertEqual(result.confidence, Confidence.MEDIUM)
        self.assertIn("defined under conditional compilation", result.evidence)

    def test_tested_by_preprocessor_conditional_blocks_rewrite(self):
        result = classify(
            "#define VERSION 3\n"
            "#if VERSION > 2\n"
            "int modern = VERSION;\n"
            "#endif\n"
        )["VERSION"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("tested by #if at line 2", result.reason)

    def test_usage_precedence_blocks_object_like_rewrite(self):
        result = classify("#define SUM 1 + 2\nint x = SUM * 3;\n")["SUM"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn(HazardKind.USAGE_PRECEDENCE, hazard_kinds(result))
        self.assertIn("line(s) 2", result.reason)

    def test_unparenthesized_body_with_safe_usages_is_medium(self):
        result = classify("#define SUM 1 + 2\nint x = SUM;\n")["SUM"]
        self.assertEqual(result.confidence, Confidence.MEDIUM)
        self.assertIn("unparenthesized compound replacement list", result.evidence)
        self.assertNotIn(HazardKind.USAGE_PRECEDENCE, hazard_kinds(result))

    def test_non_macro_identifier_is_unclassified(self):
        result = classify("#define LIMIT max_size\nint n = LIMIT;\n")["LIMIT"]
        self.assertEqual(result.tag, PatternTag.UNCLASSIFIED)
        self.assertIn("not constant-foldable", result.reason)


class TestClassScopedConstants(unittest.TestCase):
    """Macros defined inside a class body."""

    SOURCE = (
        "class GamePlayer {\n"
        "#define NumTurns 5\n"
        "    int scores[NumTurns];\n"
        "};\n"
    )

    def test_array_bound_inside_class_is_enum_hack(self):
        result = classify(self.SOURCE)["NumTurns"]
        self.assertEqual(result.tag, PatternTag.ENUM_HACK_CANDIDATE)
        self.assertEqual(result.context.scope_frame.name, "GamePlayer")
        self.assertTrue(any("constant expression inside the class body" in e for e in result.evidence))

    def test_static_const_style_forces_class_scoped_constant(self):
        config = EngineConfig(class_constant_style=ClassConstantStyle.STATIC_CONST_IN_CLASS)
        result = classify(self.SOURCE, config)["NumTurns"]
        self.assertEqual(result.tag, PatternTag.CLASS_SCOPED_CONSTANT)

    def test_enum_hack_style_applies_without_constant_usage(self):
        source = (
            "class Timer {\n"
            "#define TICKS 10\n"
            "    int now() { return TICKS; }\n"
            "};\n"
        )
        self.assertEqual(classify(source)["TICKS"].tag, PatternTag.CLASS_SCOPED_CONSTANT)
        config = EngineConfig(class_constant_style=ClassConstantStyle.ENUM_HACK)
        self.assertEqual(classify(source, config)["TICKS"].tag, PatternTag.ENUM_HACK_CANDIDATE)

    def test_floating_class_constant_is_never_enum_hack(self):
        config = EngineConfig(class_constant_style=ClassConstantStyle.ENUM_HACK)
        source = (
            "class Circle {\n"
            "#define PI 3.14159\n"
            "    double area(double r) { return PI * r * r; }\n"
            "};\n"
        )
        self.assertEqual(classify(source, config)["PI"].tag, PatternTag.CLASS_SCOPED_CONSTANT)

    def test_private_constant_used_outside_class_is_unrewritable(self):
        source = (
            "class Widget {\n"
            "#define LIMIT 3\n"
            "    int slots[LIMIT];\n"
            "};\n"
            "int g = LIMIT;\n"
        )
        result = classify(source)["LIMIT"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("private class constant used outside class Widget at line 5", result.reason)

    def test_public_constant_used_outside_gets_qualified_usage(self):
        source = (
            "struct Limits {\n"
            "#define MAX_USERS 64\n"
            "    int users[MAX_USERS];\n"
            "};\n"
            "int cap = MAX_USERS;\n"
        )
        result = classify(source)["MAX_USERS"]
        self.assertEqual(result.confidence, Confidence.MEDIUM)
        self.assertEqual(len(result.qualified_usages), 1)
        self.assertEqual(result.qualified_usages[0].qualifier, "Limits")
        self.assertEqual(result.qualified_usages[0].usage.line, 5)


class TestFunctionLikeMacros(unittest.TestCase):
    """Function-like macros and their hazards."""

    SOURCE = (
        "#define CALL_WITH_MAX(a, b) f((a) > (b) ? (a) : (b))\n"
        "void f(int);\n"
        "void g() {\n"
        "    int a = 5, b = 0;\n"
        "    CALL_WITH_MAX(++a, b);\n"
        "}\n"
    )

    def test_call_with_max_is_function_like_with_repeated_evaluation(self):
        result = classify(self.SOURCE)["CALL_WITH_MAX"]
        self.assertEqual(result.tag, PatternTag.FUNCTION_LIKE_MACRO)
        self.assertEqual(result.confidence, Confidence.HIGH)
        self.assertIsInstance(result.payload, FunctionPayload)
        self.assertEqual(result.payload.parameters, ("a", "b"))
        repeated = [h for h in result.hazards if h.kind is HazardKind.REPEATED_EVALUATION]
        self.assertEqual({h.parameter for h in repeated}, {"a", "b"})

    def test_side_effecting_argument_is_recorded_against_repeated_parameter(self):
        result = classify(self.SOURCE)["CALL_WITH_MAX"]
        side_effects = [h for h in result.hazards if h.kind is HazardKind.SIDE_EFFECT_ARGUMENT]
        self.assertEqual(len(side_effects), 1)
        self.assertEqual(side_effects[0].parameter, "a")
        self.assertIn("line 5", side_effects[0].detail)
        self.assertEqual(result.confidence, Confidence.HIGH)

    def test_repeated_evaluation_flagged_without_usages(self):
        result = classify("#define SQUARE(x) ((x) * (x))\n")["SQUARE"]
        self.assertEqual(result.tag, PatternTag.FUNCTION_LIKE_MACRO)
        self.assertIn(HazardKind.REPEATED_EVALUATION, hazard_kinds(result))

    def test_unparenthesized_parameter_is_precedence_hazard(self):
        result = classify("#define DOUBLE(x) (x * 2)\n")["DOUBLE"]
        precedence = [h for h in result.hazards if h.kind is HazardKind.PRECEDENCE]
        self.assertEqual([h.parameter for h in precedence], ["x"])

    def test_mutated_parameter_is_medium(self):
        result = classify("#define BUMP(x) (++(x))\n")["BUMP"]
        self.assertEqual(result.confidence, Confidence.MEDIUM)
        self.assertEqual(result.payload.mutated_parameters, ("x",))
        self.assertIn(HazardKind.PARAMETER_MUTATION, hazard_kinds(result))

    def test_free_variable_is_medium(self):
        result = classify("#define SCALE(x) ((x) * factor)\n")["SCALE"]
        self.assertEqual(result.confidence, Confidence.MEDIUM)
        self.assertEqual(result.payload.free_variables, ("factor",))

    def test_parameter_used_as_type_is_unrewritable(self):
        result = classify("#define MAKE(T) (new T())\n")["MAKE"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("parameter 'T' is used as a type", result.reason)

    def test_variadic_macro_is_unclassified(self):
        result = classify("#define LOG(fmt, ...) printf(fmt, __VA_ARGS__)\n")["LOG"]
        self.assertEqual(result.tag, PatternTag.UNCLASSIFIED)
        self.assertEqual(result.reason, "variadic parameter list")


class TestUnclassified(unittest.TestCase):
    """Macros the engine refuses to classify."""

    def test_conflicting_redefinition_is_ambiguous(self):
        result = classify(
            "#define LIMIT 10\n"
            "int a = LIMIT;\n"
            "#define LIMIT 20\n"
            "int b = LIMIT;\n"
        )["LIMIT"]
        self.assertEqual(result.tag, PatternTag.UNCLASSIFIED)
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("ambiguous redefinition", result.reason)
        self.assertIn("lines 1, 3", result.reason)
        self.assertIsNone(result.payload)

    def test_identical_redefinition_is_not_ambiguous(self):
        result = classify("#define LIMIT 10\n#define LIMIT 10\nint a = LIMIT;\n")["LIMIT"]
        self.assertEqual(result.tag, PatternTag.SIMPLE_CONSTANT)
        self.assertIn("identical redefinitions are merged into one declaration", result.evidence)

    def test_dependency_on_unclassified_macro_is_transitive(self):
        results = classify(
            "#define PASTE(a, b) a ## b\n"
            "#define BASE PASTE(1, 2)\n"
            "#define DERIVED (BASE + 1)\n"
            "int d = DERIVED;\n"
        )
        self.assertEqual(results["PASTE"].reason, "relies on token pasting")
        self.assertEqual(results["BASE"].tag, PatternTag.UNCLASSIFIED)
        self.assertIn("replacement invokes function-like macro 'PASTE'", results["BASE"].reason)
        derived = results["DERIVED"]
        self.assertEqual(derived.tag, PatternTag.UNCLASSIFIED)
        self.assertIn("depends on Unclassified macro 'BASE'", derived.reason)

    def test_ambiguity_propagates_to_dependents(self):
        results = classify(
            "#define SIZE 4\n"
            "#define SIZE 8\n"
            "#define BYTES (SIZE * 2)\n"
        )
        self.assertEqual(results["BYTES"].tag, PatternTag.UNCLASSIFIED)
        self.assertIn("depends on Unclassified macro 'SIZE'", results["BYTES"].reason)

    def test_stringizing_and_statement_bodies(self):
        results = classify(
            "#define NAME(x) #x\n"
            "#define SWAP(a, b) { int t = a; a = b; b = t; }\n"
            "#define LOOP while (1)\n"
        )
        self.assertEqual(results["NAME"].reason, "relies on stringizing")
        self.assertEqual(results["SWAP"].reason, "multi-statement body")
        self.assertEqual(results["LOOP"].reason, "multi-statement body")

    def test_recursive_references_are_unclassified(self):
        results = classify("#define A (B + 1)\n#define B (A + 1)\n")
        self.assertFalse(results["A"].is_classified)
        self.assertFalse(results["B"].is_classified)
        self.assertIn("recursive macro reference", results["A"].reason)


class TestSkippedMacros(unittest.TestCase):
    """Macros that need no rewrite and are marked skipped."""

    def test_include_guard_is_skipped(self):
        results = classify(
            "#ifndef WIDGET_H\n"
            "#define WIDGET_H\n"
            "int w;\n"
            "#endif\n",
            path="widget.h",
        )
        guard = results["WIDGET_H"]
        self.assertTrue(guard.skipped)
        self.assertEqual(guard.reason, "include guard")

    def test_empty_replacement_is_skipped(self):
        result = classify("#define EXPORT\nEXPORT int x;\n")["EXPORT"]
        self.assertTrue(result.skipped)
        self.assertEqual(result.reason, "empty replacement list")

    def test_disabled_definition_is_skipped(self):
        result = classify("#if 0\n#define OLD 1\n#endif\n")["OLD"]
        self.assertTrue(result.skipped)
        self.assertEqual(result.reason, "defined only in a disabled branch")


class TestReferencesFromOtherMacros(unittest.TestCase):
    """Scoped macros reached through another macro's replacement list."""

    def test_block_constant_expanded_in_another_function_is_unrewritable(self):
        source = (
            "void f() {\n"
            "#define LIMIT 10\n"
            "    int a = LIMIT;\n"
            "}\n"
            "#define CHECK(v) do { if ((v) > LIMIT) abort(); } while (0)\n"
            "void g(int x) { CHECK(x); }\n"
        )
        results = classify(source)
        limit = results["LIMIT"]
        self.assertEqual(limit.confidence, Confidence.UNREWRITABLE)
        self.assertIn(
            "expanded outside the block it is defined in through macro 'CHECK' at line 6",
            limit.reason,
        )
        self.assertEqual(limit.referenced_by, ("CHECK",))
        self.assertEqual(results["CHECK"].tag, PatternTag.UNCLASSIFIED)

    def test_block_constant_expanded_in_the_same_function_is_kept(self):
        source = (
            "void f() {\n"
            "#define LIMIT 10\n"
            "#define TWICE (LIMIT * 2)\n"
            "    int a = TWICE;\n"
            "}\n"
        )
        limit = classify(source)["LIMIT"]
        self.assertEqual(limit.tag, PatternTag.SIMPLE_CONSTANT)
        self.assertNotEqual(limit.confidence, Confidence.UNREWRITABLE)

    def test_class_constant_expanded_outside_the_class_is_unrewritable(self):
        source = (
            "class Buffer {\n"
            "#define CAPACITY 16\n"
            "    char data[CAPACITY];\n"
            "};\n"
            "#define RESET(v) ((v) = CAPACITY)\n"
            "void h() { int y; RESET(y); }\n"
        )
        results = classify(source)
        capacity = results["CAPACITY"]
        self.assertEqual(capacity.confidence, Confidence.UNREWRITABLE)
        self.assertIn("through macro 'RESET' at line 6", capacity.reason)
        self.assertEqual(capacity.qualified_usages, ())
        self.assertEqual(results["RESET"].confidence, Confidence.UNREWRITABLE)

    def test_scoped_constant_referenced_by_unused_macro_is_unrewritable(self):
        source = (
            "struct Limits {\n"
            "#define MAX_USERS 64\n"
            "    int users[MAX_USERS];\n"
            "};\n"
            "#define HALF_USERS (MAX_USERS / 2)\n"
        )
        result = classify(source)["MAX_USERS"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("referenced by macro 'HALF_USERS' whose expansion sites are unknown", result.reason)

    def test_chained_reference_uses_the_outermost_expansion(self):
        source = (
            "void f() {\n"
            "#define STEP 3\n"
            "}\n"
            "#define INNER (STEP + 1)\n"
            "#define OUTER (INNER * 2)\n"
            "int total = OUTER;\n"
        )
        result = classify(source)["STEP"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("through macro 'OUTER' at line 6", result.reason)
        self.assertNotIn("expansion sites are unknown", result.reason)

    def test_global_constant_referenced_by_other_macros_is_unaffected(self):
        source = "#define WIDTH 4\n#define AREA (WIDTH * WIDTH)\n"
        result = classify(source)["WIDTH"]
        self.assertEqual(result.confidence, Confidence.HIGH)
        self.assertEqual(result.referenced_by, ("AREA",))

    def test_parameter_named_like_a_macro_is_not_a_reference(self):
        source = "#define N 8\n#define SCALE(N) ((N) * 2)\n"
        self.assertEqual(classify(source)["N"].referenced_by, ())


class TestRepeatedInclusion(unittest.TestCase):
    def test_header_included_twice_without_guard_is_unrewritable(self):
        stream = scan_translation_unit(
            "main.cpp",
            '#include "k.h"\n#include "k.h"\nint k = K;\n',
            loader=lambda path: b"#define K 3\n",
        )
        _, _, results = classify_unit(stream)
        result = {r.macro_name: r for r in results}["K"]
        self.assertEqual(result.confidence, Confidence.UNREWRITABLE)
        self.assertIn("included more than once without an include guard", result.reason)


class TestClassifierApi(unittest.TestCase):
    def test_results_are_cached_and_ordered(self):
        stream = scan_translation_unit("unit.cpp", "#define B 2\n#define A (B + 1)\n")
        table, resolver, results = classify_unit(stream)
        self.assertEqual([r.macro_name for r in results], ["B", "A"])
        classifier = MacroClassifier(stream, table, resolver)
        self.assertIs(classifier.classify("A"), classifier.classify("A"))

    def test_to_dict_is_serializable_summary(self):
        result = classify("#define ASPECT_RATIO 1.653\n")["ASPECT_RATIO"]
        payload = result.to_dict()
        self.assertEqual(payload["tag"], "SimpleConstant")
        self.assertEqual(payload["confidence"], "high")
        self.assertEqual(payload["payload"]["type_name"], "double")
        self.assertEqual(payload["usage_count"], 0)


if __name__ == "__main__":
    unittest.main()
