import tempfile
import unittest
from pathlib import Path

import yaml

from colsync.errors import FilesystemError, PathSafetyError, SchemaValidationError
from colsync.models import (
    ApiKeyAuth,
    AuthConfig,
    CollectionTree,
    Folder,
    GrpcRequest,
    HttpRequest,
    KeyValue,
    RequestItem,
)
from colsync.parsers.collection_files import (
    load_collection,
    request_type_from_filename,
    sanitize_filename,
    save_collection,
)
from colsync.sync.mod_tracker import ModificationTracker, file_mtime_ms


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _read_yaml(path: Path) -> dict:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def _snapshot(directory: Path) -> dict[str, bytes]:
    return {
        str(path.relative_to(directory)): path.read_bytes()
        for path in sorted(directory.rglob("*"))
        if path.is_file()
    }


def _sample_tree() -> CollectionTree:
    return CollectionTree(
        name="Pet Store",
        description="Sample API",
        auth=AuthConfig(type="api-key", apiKey=ApiKeyAuth(key="X-Api-Key", value="secret", in_="header")),
        variables=[KeyValue(key="baseUrl", value="https://petstore.example.com")],
        items=[
            RequestItem(
                name="List Pets",
                request=HttpRequest(
                    name="List Pets",
                    method="GET",
                    url="{{baseUrl}}/pets",
                    headers=[KeyValue(key="Accept", value="application/json")],
                    params=[KeyValue(key="limit", value="10", enabled=False)],
                ),
            ),
            Folder(
                name="Admin Tools",
                description="Privileged endpoints",
                items=[
                    RequestItem(
                        name="Delete Pet",
                        request=HttpRequest(name="Delete Pet", method="DELETE", url="{{baseUrl}}/pets/1"),
                    ),
                    RequestItem(
                        name="Watch Pets",
                        request=GrpcRequest(
                            name="Watch Pets",
                            methodType="server-streaming",
                            url="grpc.example.com:443",
                            service="pets.PetService",
                            method="Watch",
                            metadata=[KeyValue(key="x-trace", value="1")],
                            message='{"species": "cat"}',
                        ),
                    ),
                ],
            ),
        ],
    )


class FilenameTests(unittest.TestCase):
    def test_sanitize_filename_collapses_and_trims(self) -> None:
        self.assertEqual(sanitize_filename("Get Users!"), "get-users")
        self.assertEqual(sanitize_filename("  --Create  User (v2)--"), "create-user-v2")
        self.assertEqual(sanitize_filename("get-users"), "get-users")
        self.assertEqual(sanitize_filename("!!!"), "")

    def test_request_type_from_filename(self) -> None:
        self.assertEqual(request_type_from_filename("get-users.http.yaml"), "http")
        self.assertEqual(request_type_from_filename("stream.grpc.yaml"), "grpc")
        self.assertIsNone(request_type_from_filename("_folder.yaml"))
        self.assertIsNone(request_type_from_filename("notes.yaml"))
        self.assertIsNone(request_type_from_filename(".http.yaml"))


class LoadCollectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name) / "demo"
        self.root.mkdir()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_loads_minimal_collection(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(
            self.root / "get-users.http.yaml",
            "name: Get Users\nmethod: GET\nurl: https://api.example.com/users\n",
        )

        tree = load_collection(self.root)

        self.assertEqual(tree.name, "Demo")
        self.assertEqual(tree.sourcePath, str(self.root))
        self.assertEqual(len(tree.items), 1)
        item = tree.items[0]
        self.assertIsInstance(item, RequestItem)
        self.assertEqual(item.name, "Get Users")
        self.assertEqual(item.request.type, "http")
        self.assertEqual(item.request.method, "GET")
        self.assertEqual(item.request.url, "https://api.example.com/users")
        self.assertEqual(item.request.headers, [])
        self.assertEqual(item.request.params, [])
        self.assertEqual(item.sourcePath, str(self.root / "get-users.http.yaml"))

    def test_records_modification_times(self) -> None:
        meta = _write(self.root / "_collection.yaml", "name: Demo\n")
        request = _write(self.root / "a.http.yaml", "url: https://example.com\n")
        tracker = ModificationTracker()

        load_collection(self.root, tracker)

        self.assertEqual(tracker.get(meta), file_mtime_ms(meta))
        self.assertEqual(tracker.get(request), file_mtime_ms(request))

    def test_assigns_fresh_ids_on_every_load(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\nvariables:\n  - key: host\n    value: localhost\n")
        _write(self.root / "a.http.yaml", "headers:\n  - key: Accept\n    value: '*/*'\n")

        first = load_collection(self.root)
        second = load_collection(self.root)

        self.assertNotEqual(first.id, second.id)
        self.assertNotEqual(first.items[0].id, second.items[0].id)
        self.assertNotEqual(first.items[0].request.id, second.items[0].request.id)
        self.assertNotEqual(first.variables[0].id, second.variables[0].id)
        self.assertNotEqual(first.items[0].request.headers[0].id, second.items[0].request.headers[0].id)

    def test_ids_in_files_are_ignored(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(
            self.root / "a.http.yaml",
            "id: stale-request-id\nheaders:\n  - id: stale-header-id\n    key: Accept\n    value: json\n",
        )

        tree = load_collection(self.root)

        request = tree.items[0].request
        self.assertNotEqual(request.id, "stale-request-id")
        self.assertNotEqual(request.headers[0].id, "stale-header-id")

    def test_request_name_defaults_to_filename(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "list-users.http.yaml", "url: https://example.com/users\n")

        tree = load_collection(self.root)

        self.assertEqual(tree.items[0].name, "list-users")

    def test_grpc_request_variant_comes_from_suffix(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(
            self.root / "stream.grpc.yaml",
            "name: Stream\ntype: http\nservice: pets.PetService\nmethod: Watch\nmethodType: server-streaming\n",
        )

        tree = load_collection(self.root)

        request = tree.items[0].request
        self.assertIsInstance(request, GrpcRequest)
        self.assertEqual(request.service, "pets.PetService")
        self.assertEqual(request.methodType, "server-streaming")

    def test_scalar_values_are_read_as_text(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\nvariables:\n  - key: port\n    value: 8080\n")
        _write(self.root / "a.http.yaml", "params:\n  - key: verbose\n    value: true\n")

        tree = load_collection(self.root)

        self.assertEqual(tree.variables[0].value, "8080")
        self.assertEqual(tree.items[0].request.params[0].value, "true")

    def test_ignores_hidden_and_unrelated_entries(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "README.md", "# notes\n")
        _write(self.root / ".git" / "config", "[core]\n")
        _write(self.root / ".hidden.http.yaml", "url: https://example.com\n")
        _write(self.root / "a.http.yaml", "url: https://example.com\n")

        tree = load_collection(self.root)

        self.assertEqual([item.name for item in tree.items], ["a"])

    def test_missing_directory_is_fatal(self) -> None:
        with self.assertRaises(FilesystemError):
            load_collection(self.root / "missing")

    def test_missing_collection_metadata_is_fatal(self) -> None:
        _write(self.root / "a.http.yaml", "url: https://example.com\n")

        with self.assertRaises(FilesystemError) as ctx:
            load_collection(self.root)

        self.assertIn("_collection.yaml", str(ctx.exception))

    def test_invalid_collection_metadata_is_fatal(self) -> None:
        _write(self.root / "_collection.yaml", "name: ''\n")

        with self.assertRaises(SchemaValidationError):
            load_collection(self.root)

    def test_malformed_collection_yaml_is_fatal(self) -> None:
        _write(self.root / "_collection.yaml", "name: [unclosed\n")

        with self.assertRaises(SchemaValidationError):
            load_collection(self.root)

    def test_rejected_directory_is_not_read(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        seen = []

        def gate(path):
            seen.append(str(path))
            return False

        with self.assertRaises(PathSafetyError) as ctx:
            load_collection(self.root, is_path_safe=gate)

        self.assertEqual(seen, [str(self.root)])
        self.assertTrue(str(ctx.exception).startswith("Access denied"))

    def test_rejected_child_entries_are_skipped(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "a.http.yaml", "url: https://example.com/a\n")
        _write(self.root / "b.http.yaml", "url: https://example.com/b\n")
        blocked = str(self.root / "b.http.yaml")
        warnings = []

        tree = load_collection(self.root, is_path_safe=lambda p: str(p) != blocked, warnings=warnings)

        self.assertEqual([item.name for item in tree.items], ["a"])
        self.assertEqual(len(warnings), 1)
        self.assertEqual(warnings[0].path, blocked)

    def test_partial_load_skips_malformed_request(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        for index in range(9):
            _write(self.root / f"request-{index}.http.yaml", f"url: https://example.com/{index}\n")
        _write(self.root / "broken.http.yaml", "url: [unclosed\n")
        warnings = []

        tree = load_collection(self.root, warnings=warnings)

        self.assertEqual(len(tree.items), 9)
        self.assertNotIn("broken", [item.name for item in tree.items])
        self.assertEqual(len(warnings), 1)
        self.assertTrue(warnings[0].path.endswith("broken.http.yaml"))

    def test_schema_invalid_request_is_skipped(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "good.http.yaml", "method: GET\n")
        _write(self.root / "bad.http.yaml", "method: FETCH\n")
        warnings = []

        tree = load_collection(self.root, warnings=warnings)

        self.assertEqual([item.name for item in tree.items], ["good"])
        self.assertIn("method", warnings[0].reason)

    def test_folder_metadata_supplies_name_and_description(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "users" / "_folder.yaml", "name: User Management\ndescription: CRUD\n")
        _write(self.root / "users" / "create.http.yaml", "method: POST\n")

        tree = load_collection(self.root)

        folder = tree.items[0]
        self.assertIsInstance(folder, Folder)
        self.assertEqual(folder.name, "User Management")
        self.assertEqual(folder.description, "CRUD")
        self.assertEqual(folder.items[0].request.method, "POST")

    def test_folder_without_metadata_uses_directory_name(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        (self.root / "misc").mkdir()

        tree = load_collection(self.root)

        self.assertEqual(tree.items[0].name, "misc")
        self.assertEqual(tree.items[0].items, [])

    def test_bad_folder_metadata_falls_back_to_directory_name(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "broken" / "_folder.yaml", "name: [unclosed\n")
        _write(self.root / "broken" / "a.http.yaml", "url: https://example.com\n")
        _write(self.root / "empty-name" / "_folder.yaml", "name: ''\n")

        tree = load_collection(self.root)

        folders = {item.name: item for item in tree.items}
        self.assertEqual(set(folders), {"broken", "empty-name"})
        self.assertEqual(len(folders["broken"].items), 1)
        self.assertIsNone(folders["broken"].description)

    def test_unknown_request_keys_survive_round_trip(self) -> None:
        _write(self.root / "_collection.yaml", "name: Demo\n")
        _write(self.root / "a.http.yaml", "url: https://example.com\nretries: 3\n")
        target = Path(self._tmp.name) / "copy"

        save_collection(load_collection(self.root), target)

        self.assertEqual(_read_yaml(target / "a.http.yaml")["retries"], 3)


class SaveCollectionTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_writes_expected_layout(self) -> None:
        target = self.base / "pets"

        written = save_collection(_sample_tree(), target)

        self.assertEqual(
            sorted(str(path.relative_to(target)) for path in written),
            sorted([
                "_collection.yaml",
                "list-pets.http.yaml",
                "admin-tools/_folder.yaml",
                "admin-tools/delete-pet.http.yaml",
                "admin-tools/watch-pets.grpc.yaml",
            ]),
        )
        meta = _read_yaml(target / "_collection.yaml")
        self.assertEqual(meta["name"], "Pet Store")
        self.assertEqual(meta["auth"]["apiKey"]["in"], "header")
        self.assertEqual(
            meta["variables"],
            [{"key": "baseUrl", "value": "https://petstore.example.com", "enabled": True}],
        )
        self.assertEqual(
            _read_yaml(target / "admin-tools" / "_folder.yaml"),
            {"name": "Admin Tools", "description": "Privileged endpoints"},
        )

    def test_ids_and_type_tags_are_not_written(self) -> None:
        target = self.base / "pets"
        save_collection(_sample_tree(), target)

        request = _read_yaml(target / "list-pets.http.yaml")
        grpc = _read_yaml(target / "admin-tools" / "watch-pets.grpc.yaml")

        self.assertNotIn("id", request)
        self.assertNotIn("type", request)
        self.assertNotIn("id", grpc)
        for entry in request["headers"] + request["params"] + grpc["metadata"]:
            self.assertNotIn("id", entry)
        self.assertEqual(request["params"], [{"key": "limit", "value": "10", "enabled": False}])

    def test_empty_variables_are_omitted(self) -> None:
        target = self.base / "bare"
        save_collection(CollectionTree(name="Bare"), target)

        self.assertEqual(_read_yaml(target / "_collection.yaml"), {"name": "Bare"})

    def test_round_trip_preserves_content(self) -> None:
        target = self.base / "pets"
        original = _sample_tree()
        save_collection(original, target)

        loaded = load_collection(target)

        self.assertEqual(loaded.name, original.name)
        self.assertEqual(loaded.description, original.description)
        self.assertEqual(loaded.auth.model_dump(), original.auth.model_dump())
        self.assertEqual([(v.key, v.value) for v in loaded.variables], [("baseUrl", "https://petstore.example.com")])

        by_name = {item.name: item for item in loaded.items}
        list_pets = by_name["List Pets"].request
        self.assertEqual(list_pets.url, "{{baseUrl}}/pets")
        self.assertEqual([(h.key, h.value, h.enabled) for h in list_pets.headers], [("Accept", "application/json", True)])
        self.assertEqual([(p.key, p.enabled) for p in list_pets.params], [("limit", False)])

        folder = by_name["Admin Tools"]
        self.assertEqual(folder.description, "Privileged endpoints")
        children = {item.name: item.request for item in folder.items}
        self.assertEqual(children["Delete Pet"].method, "DELETE")
        self.assertEqual(children["Watch Pets"].type, "grpc")
        self.assertEqual(children["Watch Pets"].service, "pets.PetService")
        self.assertEqual(children["Watch Pets"].message, '{"species": "cat"}')

    def test_saving_a_reloaded_tree_is_byte_identical(self) -> None:
        target = self.base / "pets"
        save_collection(_sample_tree(), target)
        before = _snapshot(target)

        save_collection(load_collection(target), target)

        self.assertEqual(_snapshot(target), before)

    def test_colliding_names_get_numbered_files(self) -> None:
        target = self.base / "dupes"
        tree = CollectionTree(
            name="Dupes",
            items=[
                RequestItem(name="Get Users", request=HttpRequest(url="https://example.com/1")),
                RequestItem(name="get users!", request=HttpRequest(url="https://example.com/2")),
                RequestItem(name="???", request=HttpRequest(url="https://example.com/3")),
            ],
        )

        save_collection(tree, target)

        self.assertTrue((target / "get-users.http.yaml").is_file())
        self.assertTrue((target / "get-users-2.http.yaml").is_file())
        self.assertTrue((target / "untitled.http.yaml").is_file())
        self.assertEqual(_read_yaml(target / "get-users-2.http.yaml")["name"], "get users!")
        self.assertEqual(len(load_collection(target).items), 3)

    def test_stale_files_are_left_in_place(self) -> None:
        target = self.base / "pets"
        _write(target / "old-request.http.yaml", "url: https://example.com/old\n")

        save_collection(CollectionTree(name="Pets"), target)

        self.assertTrue((target / "old-request.http.yaml").is_file())

    def test_save_records_written_files_in_tracker(self) -> None:
        target = self.base / "pets"
        tracker = ModificationTracker()

        written = save_collection(_sample_tree(), target, tracker)

        self.assertEqual(len(tracker), len(written))
        for path in written:
            self.assertEqual(tracker.get(path), file_mtime_ms(path))

    def test_rejected_target_has_no_side_effects(self) -> None:
        target = self.base / "forbidden"

        with self.assertRaises(PathSafetyError):
            save_collection(_sample_tree(), target, is_path_safe=lambda p: False)

        self.assertFalse(target.exists())


if __name__ == "__main__":
    unittest.main()
