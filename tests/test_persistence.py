import json
import os
import random
import unittest
from tempfile import TemporaryDirectory
from unittest.mock import Mock, patch

from book_idea_app import (
    BookIdea,
    IdGenerator,
    IdeaEditor,
    IdeaPersistence,
    IdeaStore,
    JsonFileStorage,
    MemoryStorage,
    STORAGE_KEY,
    StorageWriteError,
)


class FailingStorage(MemoryStorage):
    def set_item(self, key: str, value: str) -> None:
        raise StorageWriteError("disk full")


class UnreadableStorage(MemoryStorage):
    def get_item(self, key: str):
        raise PermissionError("denied")


def stored_ideas(storage: MemoryStorage):
    return json.loads(storage.items[STORAGE_KEY])


class TestAttach(unittest.TestCase):
    def test_attach_loads_stored_array(self) -> None:
        storage = MemoryStorage({STORAGE_KEY: json.dumps([{"id": "a", "title": "One"}, {"id": "b"}])})
        store = IdeaStore()

        count = IdeaPersistence(store, storage).attach()

        self.assertEqual(count, 2)
        self.assertEqual(store.ids(), ["a", "b"])

    def test_missing_key_leaves_store_empty_and_writes_nothing(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()

        IdeaPersistence(store, storage).attach()

        self.assertEqual(len(store), 0)
        self.assertNotIn(STORAGE_KEY, storage.items)

    def test_invalid_json_is_logged_not_raised(self) -> None:
        storage = MemoryStorage({STORAGE_KEY: "not json"})
        store = IdeaStore()

        with self.assertLogs("book_idea_app", level="ERROR"):
            count = IdeaPersistence(store, storage).attach()

        self.assertEqual(count, 0)
        self.assertEqual(storage.items[STORAGE_KEY], "not json")

    def test_wrong_shape_is_logged_not_raised(self) -> None:
        storage = MemoryStorage({STORAGE_KEY: json.dumps({"id": "a"})})
        store = IdeaStore()

        with self.assertLogs("book_idea_app", level="ERROR"):
            IdeaPersistence(store, storage).attach()

        self.assertEqual(len(store), 0)

    def test_read_errors_degrade_to_no_data(self) -> None:
        store = IdeaStore()

        with self.assertLogs("book_idea_app", level="ERROR"):
            count = IdeaPersistence(store, UnreadableStorage()).attach()

        self.assertEqual(count, 0)

    def test_load_does_not_write_back(self) -> None:
        raw = json.dumps([{"id": "a"}])
        storage = MemoryStorage({STORAGE_KEY: raw})

        IdeaPersistence(IdeaStore(), storage).attach()

        self.assertEqual(storage.items[STORAGE_KEY], raw)


class TestWriteBack(unittest.TestCase):
    def test_every_change_rewrites_full_sequence(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        IdeaPersistence(store, storage).attach()

        store.upsert(BookIdea(id="a", title="One"))
        self.assertEqual([d["id"] for d in stored_ideas(storage)], ["a"])

        store.upsert(BookIdea(id="b", title="Two"))
        self.assertEqual([d["id"] for d in stored_ideas(storage)], ["b", "a"])

        store.delete("a")
        self.assertEqual(stored_ideas(storage), [BookIdea(id="b", title="Two").to_dict()])

    def test_recovers_after_bad_data_on_first_change(self) -> None:
        storage = MemoryStorage({STORAGE_KEY: "not json"})
        store = IdeaStore()
        with self.assertLogs("book_idea_app", level="ERROR"):
            IdeaPersistence(store, storage).attach()

        store.upsert(BookIdea(id="a"))

        self.assertEqual([d["id"] for d in stored_ideas(storage)], ["a"])

    def test_editor_commit_persists(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        IdeaPersistence(store, storage).attach()
        editor = IdeaEditor(store, ids=IdGenerator(random.Random(3)))
        editor.update_field("title", "Salt Roads")
        editor.set_keyword_input("myth, identity")

        idea = editor.commit()

        saved = stored_ideas(storage)
        self.assertEqual(saved, [idea.to_dict()])
        self.assertEqual(saved[0]["keywords"], ["myth", "identity"])

    def test_reload_reproduces_sequence(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        IdeaPersistence(store, storage).attach()
        editor = IdeaEditor(store, ids=IdGenerator(random.Random(5)))
        for title in ("One", "Two"):
            editor.reset()
            editor.update_field("title", title)
            editor.add_chapter(title=f"{title} chapter")
            editor.commit()

        reloaded = IdeaStore()
        IdeaPersistence(reloaded, storage).attach()

        self.assertEqual(reloaded.ideas, store.ideas)

    def test_write_failure_is_reported_not_raised(self) -> None:
        store = IdeaStore()
        persistence = IdeaPersistence(store, FailingStorage())
        persistence.attach()
        failures = Mock()
        persistence.on_write_failed(failures)

        with self.assertLogs("book_idea_app", level="ERROR"):
            store.upsert(BookIdea(id="a"))

        self.assertFalse(persistence.last_write_ok)
        failures.assert_called_once()
        self.assertIsInstance(failures.call_args[0][0], StorageWriteError)
        self.assertEqual(store.ids(), ["a"])

    def test_unserializable_idea_is_reported_not_raised(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        persistence = IdeaPersistence(store, storage)
        persistence.attach()
        failures = Mock()
        persistence.on_write_failed(failures)

        with self.assertLogs("book_idea_app", level="ERROR"):
            store.upsert(BookIdea(id="a", chapters=[{"id": "x"}]))
            self.assertFalse(persistence.last_write_ok)
            self.assertFalse(persistence.save())

        self.assertEqual(failures.call_count, 2)
        self.assertIsInstance(failures.call_args[0][0], AttributeError)
        self.assertNotIn(STORAGE_KEY, storage.items)

    def test_committed_chapter_objects_match_storage(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        IdeaPersistence(store, storage).attach()
        editor = IdeaEditor(store, ids=IdGenerator(random.Random(7)))
        editor.update_field("chapters", [{"id": "c1", "title": "Spark", "focus": "Inciting incident"}])

        idea = editor.commit()

        self.assertEqual(stored_ideas(storage), [store.get(idea.id).to_dict()])
        self.assertEqual(stored_ideas(storage)[0]["chapters"], [{"id": "c1", "title": "Spark", "focus": "Inciting incident"}])

    def test_detach_stops_writes(self) -> None:
        storage = MemoryStorage()
        store = IdeaStore()
        persistence = IdeaPersistence(store, storage)
        persistence.attach()

        persistence.detach()
        store.upsert(BookIdea(id="a"))

        self.assertNotIn(STORAGE_KEY, storage.items)


class TestJsonFileStorage(unittest.TestCase):
    def test_round_trips_value_through_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(tmpdir)

            self.assertIsNone(storage.get_item(STORAGE_KEY))
            storage.set_item(STORAGE_KEY, "[]")

            self.assertEqual(storage.get_item(STORAGE_KEY), "[]")
            self.assertTrue(os.path.exists(os.path.join(tmpdir, f"{STORAGE_KEY}.json")))
            self.assertFalse(os.path.exists(os.path.join(tmpdir, f"{STORAGE_KEY}.json.tmp")))

    def test_creates_missing_data_dir(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(os.path.join(tmpdir, "nested", "data"))

            storage.set_item("k", "v")

            self.assertEqual(storage.get_item("k"), "v")

    def test_remove_item(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(tmpdir)
            storage.set_item("k", "v")

            storage.remove_item("k")
            storage.remove_item("k")

            self.assertIsNone(storage.get_item("k"))

    def test_locked_file_raises_after_retries(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(tmpdir, retries=3, base_delay=0)

            with patch("book_idea_app.time.sleep") as sleep, patch(
                "book_idea_app.os.replace", side_effect=PermissionError("locked")
            ) as replace:
                with self.assertRaises(StorageWriteError):
                    storage.set_item(STORAGE_KEY, "[]")

            self.assertEqual(sleep.call_count, 3)
            self.assertEqual(replace.call_count, 4)

    def test_other_os_errors_fail_without_waiting(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(tmpdir)

            with patch("book_idea_app.time.sleep") as sleep, patch(
                "book_idea_app.os.replace", side_effect=IsADirectoryError("is a directory")
            ) as replace:
                with self.assertRaises(StorageWriteError):
                    storage.set_item(STORAGE_KEY, "[]")

            sleep.assert_not_called()
            self.assertEqual(replace.call_count, 2)

    def test_default_backoff_stays_under_a_second(self) -> None:
        with TemporaryDirectory() as tmpdir:
            storage = JsonFileStorage(tmpdir)

            with patch("book_idea_app.time.sleep") as sleep, patch(
                "book_idea_app.os.replace", side_effect=PermissionError("locked")
            ):
                with self.assertRaises(StorageWriteError):
                    storage.set_item(STORAGE_KEY, "[]")

            self.assertLess(sum(c.args[0] for c in sleep.call_args_list), 1.0)

    def test_persistence_with_file_storage(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = IdeaStore()
            IdeaPersistence(store, JsonFileStorage(tmpdir)).attach()
            store.upsert(BookIdea(id="a", title="Salt Roads", created_at="2026-01-01T00:00:00.000Z"))

            reloaded = IdeaStore()
            IdeaPersistence(reloaded, JsonFileStorage(tmpdir)).attach()

        self.assertEqual(reloaded.ideas, store.ideas)


if __name__ == "__main__":
    unittest.main()
