"""Unit tests for the Markdown workflow parser."""

from pathlib import Path

import pytest

from conftest import dedent, make_workflow
from flowstack.errors import MalformedWorkflow
from flowstack.gates import DEFAULT_CHECKS
from flowstack.parser import load, parse_text


SERVICE_SOURCE = dedent(
    """
    ---
    name: python-service
    version: 1.2.0
    stacks: [python, service]
    depends_on: [python-development]
    gates:
      commit: default
    ---
    # Python Service Workflow

    Intro text is ignored.

    ## 1. RED
    - [ ] Write a failing endpoint test
    - [x] Cover the error response

    ## 2. GREEN
    * [ ] Implement the handler

    ## 3. REFACTOR
    1. [ ] Extract business logic

    ### Notes
    - [ ] Rename helpers

    ## 4. Commit
    - [ ] Conventional commit message

    ```markdown
    ## RED
    - [ ] inside a fence
    ```

    ## Related Workflows
    - [Python Development](python-development.md)
    - Observability
    """
)


class TestParseText:
    """Test cases for well-formed workflow sources."""

    def test_front_matter_fields(self):
        document = parse_text(SERVICE_SOURCE)

        assert document.name == "python-service"
        assert document.version == "1.2.0"
        assert document.title == "Python Service Workflow"
        assert document.applicable_stacks == frozenset({"python", "service"})
        assert document.depends_on == frozenset({"python-development"})

    def test_phases_and_items(self):
        document = parse_text(SERVICE_SOURCE)

        assert [phase.name for phase in document.phases] == ["Red", "Green", "Refactor", "Commit"]
        red = document.phases[0]
        assert [item.description for item in red.items] == [
            "Write a failing endpoint test",
            "Cover the error response",
        ]
        assert [item.item_id for item in red.items] == ["red/1", "red/2"]
        assert all(item.status == "pending" for item in red.items)

    def test_nested_heading_items_stay_in_phase(self):
        """Test that a deeper heading does not close the enclosing phase."""
        document = parse_text(SERVICE_SOURCE)

        refactor = document.phases[2]
        assert len(refactor.items) == 2

    def test_phase_word_subheading_stays_in_phase(self):
        """Test that '### Commit message format' inside the Commit phase is not a new phase."""
        source = dedent(
            """
            ---
            name: conventional
            ---
            ## RED Phase
            - [ ] write test

            ## COMMIT Phase
            - [ ] commit

            ### Commit message format
            - [ ] use a conventional prefix
            """
        )

        document = parse_text(source)

        assert [phase.name for phase in document.phases] == ["Red", "Commit"]
        assert [item.description for item in document.phases[1].items] == [
            "commit",
            "use a conventional prefix",
        ]

    def test_same_level_phase_heading_closes_previous_phase(self):
        source = "---\nname: steps\n---\n## RED\n- [ ] a\n### details\n- [ ] b\n## GREEN\n- [ ] c\n"

        document = parse_text(source)

        assert [len(phase.items) for phase in document.phases] == [2, 1]

    def test_fenced_code_is_skipped(self):
        document = parse_text(SERVICE_SOURCE)

        commit = document.phases[3]
        assert [item.description for item in commit.items] == ["Conventional commit message"]

    def test_default_gate(self):
        document = parse_text(SERVICE_SOURCE)

        commit = document.phases[3]
        assert commit.gate.checks == DEFAULT_CHECKS
        assert document.phases[0].gate is None

    def test_related_workflows_are_informational(self):
        document = parse_text(SERVICE_SOURCE)

        assert document.related == ("Python Development", "Observability")
        assert "observability" not in document.depends_on

    def test_name_defaults_to_file_stem(self):
        source = "## RED\n- [ ] test\n"
        document = parse_text(source, source_path=Path("/tmp/Rust-Development.md"))

        assert document.name == "rust-development"
        assert document.version == "0.0.0"
        assert document.title == "rust-development"

    def test_comma_separated_stacks_and_tags_alias(self):
        source = "---\nname: db\ntags: sqlite, Database\n---\n## RED\n- [ ] test\n"
        document = parse_text(source)

        assert document.applicable_stacks == frozenset({"sqlite", "database"})

    def test_subset_of_phases_in_order(self):
        source = "---\nname: docs\n---\n## GREEN\n- [ ] write\n## Commit\n- [ ] commit\n"
        document = parse_text(source)

        assert [phase.name for phase in document.phases] == ["Green", "Commit"]

    def test_crlf_line_endings(self):
        source = make_workflow("windows", stacks=["python"]).replace("\n", "\r\n")
        document = parse_text(source)

        assert document.name == "windows"
        assert len(document.phases) == 4


class TestMalformedSources:
    """Test cases for sources that must be rejected."""

    def test_no_phases(self):
        with pytest.raises(MalformedWorkflow, match="no RED/GREEN/REFACTOR/COMMIT"):
            parse_text("---\nname: empty\n---\n# Nothing here\n")

    def test_duplicate_phase(self):
        source = "---\nname: dup\n---\n## RED\n- [ ] a\n## RED\n- [ ] b\n"
        with pytest.raises(MalformedWorkflow, match="more than once"):
            parse_text(source)

    def test_out_of_order_phase(self):
        source = "---\nname: order\n---\n## GREEN\n- [ ] a\n## RED\n- [ ] b\n"
        with pytest.raises(MalformedWorkflow, match="out of order"):
            parse_text(source)

    def test_empty_phase(self):
        source = "---\nname: empty-phase\n---\n## RED\nNo checkboxes.\n## GREEN\n- [ ] b\n"
        with pytest.raises(MalformedWorkflow, match="'Red' has no checklist items"):
            parse_text(source)

    def test_invalid_yaml(self):
        source = "---\nname: [unclosed\n---\n## RED\n- [ ] a\n"
        with pytest.raises(MalformedWorkflow, match="invalid YAML"):
            parse_text(source)

    def test_front_matter_must_be_mapping(self):
        source = "---\n- a\n- b\n---\n## RED\n- [ ] a\n"
        with pytest.raises(MalformedWorkflow, match="must be a mapping"):
            parse_text(source)

    def test_gate_for_absent_phase(self):
        source = "---\nname: g\ngates:\n  commit: [test]\n---\n## RED\n- [ ] a\n"
        with pytest.raises(MalformedWorkflow, match="does not define"):
            parse_text(source)

    def test_gate_for_unknown_phase(self):
        source = "---\nname: g\ngates:\n  deploy: [test]\n---\n## RED\n- [ ] a\n"
        with pytest.raises(MalformedWorkflow, match="unknown phase 'deploy'"):
            parse_text(source)

    def test_invalid_name(self):
        source = "---\nname: Bad Name!\n---\n## RED\n- [ ] a\n"
        with pytest.raises(MalformedWorkflow, match="invalid workflow name"):
            parse_text(source)

    def test_missing_name_without_path(self):
        with pytest.raises(MalformedWorkflow, match="missing 'name'"):
            parse_text("## RED\n- [ ] a\n")

    def test_unknown_dependency_with_known_names(self):
        source = make_workflow("python-service", depends_on=["python-development"])
        with pytest.raises(MalformedWorkflow, match="python-development"):
            parse_text(source, known_names={"sqlite-development"})

    def test_error_names_the_file(self, tmp_path):
        path = tmp_path / "broken.md"
        path.write_text("# No phases\n", encoding="utf-8")

        with pytest.raises(MalformedWorkflow) as exc_info:
            load(path)

        assert exc_info.value.path == str(path)
        assert str(path) in str(exc_info.value)
        assert exc_info.value.exit_code == 2


class TestLoad:
    """Test cases for the load entry point."""

    def test_load_from_path(self, tmp_path):
        path = tmp_path / "sqlite-development.md"
        path.write_text(make_workflow("sqlite-development", stacks=["sqlite"]), encoding="utf-8")

        document = load(path)

        assert document.name == "sqlite-development"
        assert document.source_path == str(path)

    def test_load_from_text(self):
        document = load(make_workflow("rust-development", stacks=["rust"]))
        assert document.source_path is None

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(MalformedWorkflow, match="cannot read file"):
            load(tmp_path / "missing.md")
