import json

from minifactory.assignment import Assignment, AssignmentStore, DeploymentResult


def test_read_pending_assignment(tmp_path):
    path = tmp_path / "assignment.json"
    path.write_text(json.dumps({"project": "demo", "instructions": "add a footer", "version": "v3"}))

    assignment = AssignmentStore(path).read()

    assert assignment == Assignment(project="demo", instructions="add a footer", version="v3")


def test_version_is_optional(tmp_path):
    path = tmp_path / "assignment.json"
    path.write_text(json.dumps({"project": "demo", "instructions": "add a footer", "version": None}))
    assert AssignmentStore(path).read().version is None

    path.write_text(json.dumps({"project": "demo", "instructions": "add a footer"}))
    assert AssignmentStore(path).read().version is None


def test_missing_file_means_nothing_to_do(tmp_path):
    assert AssignmentStore(tmp_path / "assignment.json").read() is None


def test_unparsable_file_means_nothing_to_do(tmp_path):
    path = tmp_path / "assignment.json"
    path.write_text("{not json")
    assert AssignmentStore(path).read() is None


def test_result_record_is_not_an_assignment(tmp_path):
    path = tmp_path / "assignment.json"
    path.write_text('{"git_hash":"abc123\\n"}')
    assert AssignmentStore(path).read() is None


def test_result_round_trips_raw_hash(tmp_path):
    store = AssignmentStore(tmp_path / "assignment.json")

    content = store.serialize(DeploymentResult(git_hash="abc123\n"))
    store.write(content)

    assert content == '{"git_hash":"abc123\\n"}'
    assert json.loads(store.path.read_text()) == {"git_hash": "abc123\n"}


def test_non_utf8_file_means_nothing_to_do(tmp_path):
    path = tmp_path / "assignment.json"
    path.write_bytes(b'{"project": "\xff\xfe", "instructions": "x"}')
    assert AssignmentStore(path).read() is None
