# -*- coding: utf-8 -*-
"""
Book Idea Studio (PyQt5) - Draft Studio for book concepts

Version: 0.1.0  (2026-10-19)
Versioning: MAJOR.MINOR.PATCH (SemVer)

Release Notes (v0.1.0):
- Library of book ideas (newest first) + single editable form
  - Core Identity / Audience & Positioning / Narrative Blueprint / Chapter Path
  - Selecting a library entry loads a copy of it into the form (Edit mode)
  - Save commits a new idea (prepended) or updates the selected one in place
- Keywords: comma separated input, re-parsed on every keystroke
- Chapter outlines: add (title/focus) / remove, kept in insertion order
- Local storage: one key -> JSON array, written wholesale on every library change
  - Safe JSON save (tmp -> os.replace, retry with backoff, autosave fallback)
  - Broken storage file is logged and ignored (empty library, no crash)
- Export JSON: clipboard first, save dialog as fallback

Dependencies:
  pip install PyQt5
"""

import copy
import json
import logging
import logging.handlers
import os
import random
import string
import sys
import time
import traceback
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from PyQt5.QtCore import Qt
from PyQt5.QtGui import QKeySequence
from PyQt5.QtWidgets import (
    QAbstractItemView,
    QApplication,
    QComboBox,
    QFileDialog,
    QFormLayout,
    QGroupBox,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMenu,
    QMessageBox,
    QPlainTextEdit,
    QPushButton,
    QScrollArea,
    QShortcut,
    QSplitter,
    QToolButton,
    QVBoxLayout,
    QWidget,
)

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"
APP_TITLE = f"Book Idea Studio (v{APP_VERSION})"
DEFAULT_DATA_DIR = "data"
LOG_DIR = "logs"
LOG_FILE_NAME = "app.log"

STORAGE_KEY = "book-creator-ideas"

UNTITLED_TITLE = "Untitled Manuscript"
ANONYMOUS_AUTHOR = "Anonymous"
DEFAULT_EXPORT_NAME = "book"

STATUS_DRAFT = "Draft"
STATUS_IN_PROGRESS = "In Progress"
STATUS_POLISHED = "Polished"
STATUS_CHOICES = (STATUS_DRAFT, STATUS_IN_PROGRESS, STATUS_POLISHED)
_STATUS_ALIASES = {"InProgress": STATUS_IN_PROGRESS}

ID_ALPHABET = string.digits + string.ascii_lowercase
ID_LENGTH = 8

SAVE_WARN_COOLDOWN_SEC = 10.0


# ---------------------------
# Errors
# ---------------------------
class BookIdeaError(Exception):
    """Base class for errors raised by the book idea core."""


class MalformedIdeasError(BookIdeaError, ValueError):
    """Stored/imported payload does not have the shape of a list of ideas."""


class StorageWriteError(BookIdeaError, OSError):
    """A storage backend could not write a value."""


class ClipboardError(BookIdeaError):
    """The clipboard refused or could not take the export text."""


# ---------------------------
# Small helpers
# ---------------------------
def _now_epoch() -> int:
    return int(time.time())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with milliseconds and a Z suffix (2026-10-19T08:30:00.000Z)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"


def _ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _sanitize_filename(name: str, fallback: str) -> str:
    safe = "".join(ch for ch in (name or "") if ch.isalnum() or ch in (" ", "_", "-")).strip()
    return safe or fallback


def _safe_write_text(path: str, text: str, retries: int = 5, base_delay: float = 0.02) -> None:
    """
    Atomic-ish text save.
    - Writes to .tmp then os.replace(tmp, path)
    - If destination is locked (PermissionError), retry with a short backoff (well under a second)
    - Any other OSError fails at once
    - If still failing, keeps the payload in an autosave file and raises StorageWriteError
    """
    _ensure_dir(os.path.dirname(path) or ".")
    tmp_path = f"{path}.tmp"

    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(text)
    except OSError as e:
        raise StorageWriteError(f"could not write {tmp_path}: {e}") from e

    last_error: Optional[OSError] = None
    for i in range(max(1, retries)):
        try:
            os.replace(tmp_path, path)
            return
        except PermissionError as e:
            last_error = e
            time.sleep(base_delay * (1.6 ** i))
        except OSError as e:
            last_error = e
            break

    autosave_path = f"{path}.autosave.{_now_epoch()}.json"
    try:
        os.replace(tmp_path, autosave_path)
    except OSError:
        logger.warning("Could not keep autosave copy at %s", autosave_path, exc_info=True)
        autosave_path = tmp_path
    raise StorageWriteError(f"could not replace {path} (payload kept in {autosave_path})") from last_error


# ---------------------------
# Identifiers
# ---------------------------
class IdGenerator:
    """Random ids over [0-9a-z]. The random source is injectable for tests."""

    def __init__(self, rng: Optional[random.Random] = None, length: int = ID_LENGTH) -> None:
        if length < ID_LENGTH:
            raise ValueError(f"id length must be at least {ID_LENGTH}")
        self.rng = rng if rng is not None else random.SystemRandom()
        self.length = length

    def new_id(self, taken: Iterable[str] = ()) -> str:
        taken_ids = set(taken)
        while True:
            candidate = "".join(self.rng.choice(ID_ALPHABET) for _ in range(self.length))
            if candidate not in taken_ids:
                return candidate

    def __call__(self, taken: Iterable[str] = ()) -> str:
        return self.new_id(taken)


_default_ids = IdGenerator()


def create_id() -> str:
    return _default_ids.new_id()


# ---------------------------
# Keywords
# ---------------------------
def clean_keywords(text: Optional[str]) -> List[str]:
    # no dedup: duplicates are kept in the order typed
    if not text:
        return []
    return [kw.strip() for kw in text.split(",") if kw.strip()]


def format_keywords(keywords: Iterable[str]) -> str:
    return ", ".join(keywords)


def normalize_status(value: Any) -> str:
    text = str(value or "").strip()
    text = _STATUS_ALIASES.get(text, text)
    return text if text in STATUS_CHOICES else STATUS_DRAFT


# ---------------------------
# Data Models
# ---------------------------
@dataclass
class ChapterOutline:
    id: str
    title: str = ""
    focus: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "focus": self.focus}


@dataclass
class ChapterDraft:
    title: str = ""
    focus: str = ""


@dataclass
class BookIdea:
    id: str
    title: str = ""
    subtitle: str = ""
    author: str = ""
    genre: str = ""
    audience: str = ""
    tone: str = ""
    status: str = STATUS_DRAFT
    word_goal: str = ""
    synopsis: str = ""
    hook: str = ""
    keywords: List[str] = field(default_factory=list)
    chapters: List[ChapterOutline] = field(default_factory=list)
    created_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "subtitle": self.subtitle,
            "author": self.author,
            "genre": self.genre,
            "audience": self.audience,
            "tone": self.tone,
            "status": self.status,
            "wordGoal": self.word_goal,
            "synopsis": self.synopsis,
            "hook": self.hook,
            "keywords": list(self.keywords),
            "chapters": [ch.to_dict() for ch in self.chapters],
            "createdAt": self.created_at,
        }


@dataclass
class IdeaForm:
    """Working copy behind the form: a BookIdea without id/createdAt."""

    title: str = ""
    subtitle: str = ""
    author: str = ""
    genre: str = ""
    audience: str = ""
    tone: str = ""
    status: str = STATUS_DRAFT
    word_goal: str = ""
    synopsis: str = ""
    hook: str = ""
    keywords: List[str] = field(default_factory=list)
    chapters: List[ChapterOutline] = field(default_factory=list)

    @classmethod
    def from_idea(cls, idea: BookIdea) -> "IdeaForm":
        return cls(**{name: copy.deepcopy(getattr(idea, name)) for name in FORM_FIELDS})


FORM_FIELDS = tuple(f.name for f in fields(IdeaForm))


def _text(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key, "")
    return "" if value is None else str(value)


def _parse_chapter(raw: Any, where: str) -> ChapterOutline:
    if isinstance(raw, ChapterOutline):
        return copy.deepcopy(raw)
    if not isinstance(raw, dict):
        raise MalformedIdeasError(f"{where}: chapter is not an object")
    return ChapterOutline(
        id=_text(raw, "id") or create_id(),
        title=_text(raw, "title"),
        focus=_text(raw, "focus"),
    )


def _parse_idea(raw: Any, where: str) -> BookIdea:
    if isinstance(raw, BookIdea):
        return copy.deepcopy(raw)
    if not isinstance(raw, dict):
        raise MalformedIdeasError(f"{where}: idea is not an object")

    idea_id = _text(raw, "id").strip()
    if not idea_id:
        raise MalformedIdeasError(f"{where}: idea has no id")

    keywords_raw = raw.get("keywords", [])
    if keywords_raw is None:
        keywords_raw = []
    if not isinstance(keywords_raw, list):
        raise MalformedIdeasError(f"{where}: keywords is not a list")

    chapters_raw = raw.get("chapters", [])
    if chapters_raw is None:
        chapters_raw = []
    if not isinstance(chapters_raw, list):
        raise MalformedIdeasError(f"{where}: chapters is not a list")

    return BookIdea(
        id=idea_id,
        title=_text(raw, "title"),
        subtitle=_text(raw, "subtitle"),
        author=_text(raw, "author"),
        genre=_text(raw, "genre"),
        audience=_text(raw, "audience"),
        tone=_text(raw, "tone"),
        status=normalize_status(raw.get("status")),
        word_goal=_text(raw, "wordGoal"),
        synopsis=_text(raw, "synopsis"),
        hook=_text(raw, "hook"),
        keywords=[str(kw) for kw in keywords_raw],
        chapters=[_parse_chapter(ch, f"{where}.chapters[{i}]") for i, ch in enumerate(chapters_raw)],
        created_at=_text(raw, "createdAt") or format_timestamp(_utcnow()),
    )


def parse_ideas(payload: Any) -> List[BookIdea]:
    """Validate a decoded payload (list of dicts or BookIdea objects). Raises MalformedIdeasError."""
    if not isinstance(payload, list):
        raise MalformedIdeasError(f"expected a list of ideas, got {type(payload).__name__}")

    ideas: List[BookIdea] = []
    seen = set()
    for i, raw in enumerate(payload):
        idea = _parse_idea(raw, f"ideas[{i}]")
        if idea.id in seen:
            raise MalformedIdeasError(f"ideas[{i}]: duplicate id {idea.id!r}")
        seen.add(idea.id)
        ideas.append(idea)
    return ideas


def _coerce_chapters(value: Any) -> List[ChapterOutline]:
    # entries that are neither outlines nor objects are dropped
    if not isinstance(value, (list, tuple)):
        return []
    return [
        _parse_chapter(ch, f"chapters[{i}]")
        for i, ch in enumerate(value)
        if isinstance(ch, (dict, ChapterOutline))
    ]


def _coerce_keywords(value: Any) -> List[str]:
    if isinstance(value, str):
        return clean_keywords(value)
    if not isinstance(value, (list, tuple)):
        return []
    return [str(kw) for kw in value if kw is not None]


def serialize_ideas(ideas: Iterable[BookIdea]) -> str:
    return json.dumps([idea.to_dict() for idea in ideas], ensure_ascii=False, indent=2)


# ---------------------------
# Idea Store
# ---------------------------
StoreListener = Callable[["IdeaStore"], None]


class IdeaStore:
    """Ordered, id-keyed collection of ideas. New ideas go to the front."""

    def __init__(self) -> None:
        self._ideas: List[BookIdea] = []
        self._listeners: List[StoreListener] = []

    def __len__(self) -> int:
        return len(self._ideas)

    def __iter__(self) -> Iterator[BookIdea]:
        return iter(list(self._ideas))

    def __contains__(self, idea_id: object) -> bool:
        return isinstance(idea_id, str) and self.get(idea_id) is not None

    @property
    def ideas(self) -> List[BookIdea]:
        return list(self._ideas)

    def ids(self) -> List[str]:
        return [idea.id for idea in self._ideas]

    def get(self, idea_id: Optional[str]) -> Optional[BookIdea]:
        if not idea_id:
            return None
        for idea in self._ideas:
            if idea.id == idea_id:
                return idea
        return None

    def index_of(self, idea_id: str) -> int:
        for i, idea in enumerate(self._ideas):
            if idea.id == idea_id:
                return i
        return -1

    def subscribe(self, callback: StoreListener) -> None:
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: StoreListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    def load(self, records: Any) -> bool:
        try:
            ideas = parse_ideas(records)
        except MalformedIdeasError as e:
            logger.error("Ignoring malformed idea payload: %s", e)
            return False
        self._ideas = ideas
        self._notify()
        return True

    def upsert(self, idea: BookIdea) -> None:
        idea = copy.deepcopy(idea)
        i = self.index_of(idea.id)
        if i >= 0:
            self._ideas[i] = idea
        else:
            self._ideas.insert(0, idea)
        self._notify()

    def delete(self, idea_id: str) -> bool:
        remaining = [idea for idea in self._ideas if idea.id != idea_id]
        if len(remaining) == len(self._ideas):
            return False
        self._ideas = remaining
        self._notify()
        return True

    def to_json_list(self) -> List[Dict[str, Any]]:
        return [idea.to_dict() for idea in self._ideas]


# ---------------------------
# Storage backends + persistence
# ---------------------------
class MemoryStorage:
    def __init__(self, items: Optional[Dict[str, str]] = None) -> None:
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class JsonFileStorage:
    """Key/value storage where each key is a <data_dir>/<key>.json file."""

    def __init__(self, data_dir: str = DEFAULT_DATA_DIR, retries: int = 5, base_delay: float = 0.02) -> None:
        self.data_dir = data_dir
        self.retries = retries
        self.base_delay = base_delay

    def path_for(self, key: str) -> str:
        return os.path.join(self.data_dir, f"{_sanitize_filename(key, 'storage')}.json")

    def get_item(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def set_item(self, key: str, value: str) -> None:
        _safe_write_text(self.path_for(key), value, retries=self.retries, base_delay=self.base_delay)

    def remove_item(self, key: str) -> None:
        path = self.path_for(key)
        if os.path.exists(path):
            os.remove(path)


class IdeaPersistence:
    """
    Keeps one storage key equal to the store's full sequence.
    - attach(): one-time load (bad data -> logged, library stays empty)
    - every store change afterwards: wholesale rewrite of the key
    """

    def __init__(self, store: IdeaStore, storage: Any, key: str = STORAGE_KEY) -> None:
        self.store = store
        self.storage = storage
        self.key = key
        self.last_write_ok: bool = True
        self._write_failed_callbacks: List[Callable[[Exception], None]] = []
        self._attached: bool = False

    def on_write_failed(self, callback: Callable[[Exception], None]) -> None:
        self._write_failed_callbacks.append(callback)

    def _read(self) -> Optional[str]:
        try:
            return self.storage.get_item(self.key)
        except (OSError, ValueError):
            logger.error("Could not read stored ideas under %r", self.key, exc_info=True)
            return None

    def attach(self) -> int:
        raw = self._read()
        if raw:
            try:
                payload = json.loads(raw)
            except ValueError as e:
                logger.error("Stored ideas under %r are not valid JSON: %s", self.key, e)
            else:
                if self.store.load(payload):
                    logger.info("Loaded %d book idea(s) from %r", len(self.store), self.key)

        if not self._attached:
            self.store.subscribe(self._on_store_changed)
            self._attached = True
        return len(self.store)

    def detach(self) -> None:
        self.store.unsubscribe(self._on_store_changed)
        self._attached = False

    def _on_store_changed(self, store: IdeaStore) -> None:
        self.save()

    def save(self) -> bool:
        try:
            text = serialize_ideas(self.store.ideas)
            self.storage.set_item(self.key, text)
        except (OSError, TypeError, ValueError, AttributeError) as e:
            logger.error("Saving %d book idea(s) to %r failed", len(self.store), self.key, exc_info=True)
            self.last_write_ok = False
            for callback in list(self._write_failed_callbacks):
                callback(e)
            return False
        self.last_write_ok = True
        return True


# ---------------------------
# Export
# ---------------------------
EXPORT_CLIPBOARD = "clipboard"
EXPORT_DOWNLOAD = "download"
EXPORT_CANCELLED = "cancelled"
EXPORT_FAILED = "failed"


def format_idea_json(idea: BookIdea) -> str:
    return json.dumps(idea.to_dict(), ensure_ascii=False, indent=2)


def export_filename(idea: BookIdea) -> str:
    return f"{_sanitize_filename(idea.title, DEFAULT_EXPORT_NAME)}.json"


def save_export_file(path: str, text: str) -> str:
    _ensure_dir(os.path.dirname(path) or ".")
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


@dataclass
class ExportResult:
    method: str
    text: str
    path: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def copied(self) -> bool:
        return self.method == EXPORT_CLIPBOARD

    @property
    def saved(self) -> bool:
        return self.method == EXPORT_DOWNLOAD


class IdeaExporter:
    """
    Best-effort export of one idea.
    clipboard(text) raises on failure; download(filename, text) returns the
    saved path or None when the user cancels.
    """

    def __init__(
        self,
        clipboard: Callable[[str], None],
        download: Callable[[str, str], Optional[str]],
    ) -> None:
        self.clipboard = clipboard
        self.download = download

    def export(self, idea: BookIdea) -> ExportResult:
        text = format_idea_json(idea)
        try:
            self.clipboard(text)
        except Exception as e:
            logger.warning("Copying idea %s to the clipboard failed: %s", idea.id, e)
        else:
            return ExportResult(EXPORT_CLIPBOARD, text)

        filename = export_filename(idea)
        try:
            path = self.download(filename, text)
        except Exception as e:
            logger.error("Saving export %s failed", filename, exc_info=True)
            return ExportResult(EXPORT_FAILED, text, error=e)
        if not path:
            return ExportResult(EXPORT_CANCELLED, text)
        return ExportResult(EXPORT_DOWNLOAD, text, path=str(path))


# ---------------------------
# Form state (draft + selection)
# ---------------------------
class IdeaEditor:
    """
    Single draft behind the form, mirrored from at most one selected idea.

    Create mode: no selection, commit prepends a new idea.
    Edit mode: selection set, commit replaces that idea in place
    (same id, same createdAt).
    """

    def __init__(
        self,
        store: IdeaStore,
        ids: Optional[IdGenerator] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.ids = ids if ids is not None else IdGenerator()
        self.clock = clock if clock is not None else _utcnow

        self.form = IdeaForm()
        self.keyword_input: str = ""
        self.chapter_draft = ChapterDraft()
        self.selected_id: Optional[str] = None

    @property
    def selected_idea(self) -> Optional[BookIdea]:
        return self.store.get(self.selected_id)

    @property
    def is_editing(self) -> bool:
        return self.selected_idea is not None

    @property
    def mode(self) -> str:
        return "edit" if self.is_editing else "create"

    def _clear_draft(self) -> None:
        self.form = IdeaForm()
        self.keyword_input = ""
        self.chapter_draft = ChapterDraft()

    def select(self, idea_id: Optional[str]) -> Optional[BookIdea]:
        idea = self.store.get(idea_id)
        self._clear_draft()
        if idea is None:
            self.selected_id = None
            return None

        self.selected_id = idea.id
        self.form = IdeaForm.from_idea(idea)
        self.keyword_input = format_keywords(idea.keywords)
        return idea

    def sync_selection(self) -> None:
        if self.selected_id is not None and self.selected_idea is None:
            self.reset()

    def reset(self) -> None:
        self._clear_draft()
        self.selected_id = None

    def update_field(self, name: str, value: Any) -> None:
        if name not in FORM_FIELDS:
            raise KeyError(name)
        if name == "chapters":
            value = _coerce_chapters(value)
        elif name == "keywords":
            value = _coerce_keywords(value)
        else:
            value = "" if value is None else str(value)
        setattr(self.form, name, value)

    def set_keyword_input(self, text: Optional[str]) -> None:
        self.keyword_input = text or ""
        self.form.keywords = clean_keywords(self.keyword_input)

    # ---------------- Chapters ----------------
    def set_chapter_draft(self, title: Optional[str] = None, focus: Optional[str] = None) -> None:
        if title is not None:
            self.chapter_draft.title = title
        if focus is not None:
            self.chapter_draft.focus = focus

    def add_chapter(self, title: Optional[str] = None, focus: Optional[str] = None) -> Optional[ChapterOutline]:
        self.set_chapter_draft(title, focus)
        title_text = self.chapter_draft.title.strip()
        focus_text = self.chapter_draft.focus.strip()
        if not title_text and not focus_text:
            return None

        chapter = ChapterOutline(
            id=self.ids.new_id(ch.id for ch in self.form.chapters),
            title=title_text,
            focus=focus_text,
        )
        self.form.chapters = self.form.chapters + [chapter]
        self.chapter_draft = ChapterDraft()
        return chapter

    def remove_chapter(self, chapter_id: str) -> bool:
        remaining = [ch for ch in self.form.chapters if ch.id != chapter_id]
        if len(remaining) == len(self.form.chapters):
            return False
        self.form.chapters = remaining
        return True

    # ---------------- Commit / delete ----------------
    def build_idea(self) -> BookIdea:
        form = self.form
        selected = self.selected_idea
        return BookIdea(
            id=selected.id if selected else self.ids.new_id(self.store.ids()),
            title=form.title.strip() or UNTITLED_TITLE,
            subtitle=form.subtitle.strip(),
            author=form.author.strip() or ANONYMOUS_AUTHOR,
            genre=form.genre.strip(),
            audience=form.audience.strip(),
            tone=form.tone.strip(),
            status=normalize_status(form.status),
            word_goal=form.word_goal.strip(),
            synopsis=form.synopsis.strip(),
            hook=form.hook.strip(),
            keywords=clean_keywords(self.keyword_input),
            chapters=copy.deepcopy(form.chapters),
            created_at=selected.created_at if selected else format_timestamp(self.clock()),
        )

    def commit(self) -> BookIdea:
        idea = self.build_idea()
        self.store.upsert(idea)
        self.select(idea.id)
        return idea

    def delete_idea(self, idea_id: str) -> bool:
        removed = self.store.delete(idea_id)
        if self.selected_id == idea_id:
            self.reset()
        return removed


# ---------------------------
# Library display helpers
# ---------------------------
def idea_tags(idea: BookIdea) -> List[str]:
    return [t for t in (idea.genre, idea.audience, idea.tone) if t] + list(idea.keywords)


def library_label(idea: BookIdea) -> str:
    return f"{idea.title}  [{idea.status}]\n{idea.subtitle or 'No subtitle'}"


def library_tooltip(idea: BookIdea) -> str:
    lines = [idea.synopsis or "Synopsis forthcoming."]
    tags = idea_tags(idea)
    if tags:
        lines.append("Tags: " + " · ".join(tags))
    if idea.chapters:
        lines.append("Chapters:")
        for ch in idea.chapters:
            lines.append(f"- {ch.title} – {ch.focus}" if ch.focus else f"- {ch.title}")
    return "\n".join(lines)


def chapter_label(chapter: ChapterOutline) -> str:
    return f"{chapter.title or 'Untitled chapter'}\n{chapter.focus or 'Focus TBD'}"


# ---------------------------
# Logging / crash hook
# ---------------------------
def setup_logging(log_dir: str = LOG_DIR) -> None:
    _ensure_dir(log_dir)
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")

    for handler in logging.root.handlers[:]:
        logging.root.removeHandler(handler)
    logging.root.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE_NAME),
        maxBytes=1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    logging.root.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logging.root.addHandler(console_handler)

    logging.captureWarnings(True)


def install_excepthook() -> None:
    def _hook(exc_type, exc, tb) -> None:
        logger.critical("Unhandled error", exc_info=(exc_type, exc, tb))
        if QApplication.instance() is None:
            sys.__excepthook__(exc_type, exc, tb)
            return
        QMessageBox.critical(
            None,
            APP_TITLE,
            "An unexpected error occurred.\n"
            + "".join(traceback.format_exception_only(exc_type, exc)).strip()
            + f"\n\nDetails: {os.path.join(LOG_DIR, LOG_FILE_NAME)}",
        )

    sys.excepthook = _hook


# ---------------------------
# Library list
# ---------------------------
class LibraryListWidget(QListWidget):
    """Right-click opens the item menu without moving the selection (and the form draft) onto that row."""

    def mousePressEvent(self, event) -> None:
        if event.button() == Qt.RightButton:
            event.accept()
            return
        super().mousePressEvent(event)


# ---------------------------
# Main window
# ---------------------------
class MainWindow(QMainWindow):
    IDEA_ID_ROLE = Qt.UserRole + 101
    CHAPTER_ID_ROLE = Qt.UserRole + 102

    def __init__(self, storage: Any = None, data_dir: str = DEFAULT_DATA_DIR) -> None:
        super().__init__()
        self.setWindowTitle(APP_TITLE)
        self.resize(1280, 900)

        self.data_dir = data_dir
        self.store = IdeaStore()
        self.persistence = IdeaPersistence(self.store, storage if storage is not None else JsonFileStorage(data_dir))
        self.persistence.on_write_failed(self._on_write_failed)
        self.editor = IdeaEditor(self.store)
        self.exporter = IdeaExporter(clipboard=self._copy_to_clipboard, download=self._save_export_dialog)

        self._loading_ui: bool = False
        self._last_save_warn_ts: float = 0.0

        self._build_ui()

        self.persistence.attach()
        self.store.subscribe(self._on_store_changed)
        if len(self.store):
            self.editor.select(self.store.ideas[0].id)

        self._refresh_library()
        self._load_form_to_ui()

        QShortcut(QKeySequence("Ctrl+S"), self, activated=self.submit_idea)
        QShortcut(QKeySequence("Ctrl+N"), self, activated=self.clear_form)

    # ---------------- UI construction ----------------
    def _build_ui(self) -> None:
        root = QWidget(self)
        self.setCentralWidget(root)
        root_layout = QHBoxLayout(root)
        root_layout.setContentsMargins(0, 0, 0, 0)

        main_splitter = QSplitter(Qt.Horizontal, root)
        root_layout.addWidget(main_splitter)

        # Left: library
        left_panel = QWidget()
        left_layout = QVBoxLayout(left_panel)
        left_layout.setContentsMargins(8, 8, 8, 8)
        left_layout.setSpacing(8)

        left_layout.addWidget(QLabel("<b>Library</b>"))
        left_layout.addWidget(QLabel("Review previous concepts, export to JSON, or continue refining the outline."))

        self.library_list = LibraryListWidget()
        self.library_list.setContextMenuPolicy(Qt.CustomContextMenu)
        self.library_list.customContextMenuRequested.connect(self._on_library_context_menu)
        self.library_list.setSelectionMode(QAbstractItemView.SingleSelection)
        self.library_list.setWordWrap(True)
        self.library_list.itemSelectionChanged.connect(self._on_library_selection_changed)

        self.lbl_library_empty = QLabel("You haven't saved any ideas yet. Start by filling in the form.")
        self.lbl_library_empty.setWordWrap(True)

        library_controls = QWidget()
        library_controls_layout = QHBoxLayout(library_controls)
        library_controls_layout.setContentsMargins(0, 0, 0, 0)
        library_controls_layout.setSpacing(6)

        self.btn_new_idea = QToolButton()
        self.btn_new_idea.setText("+ New Idea")
        self.btn_export = QToolButton()
        self.btn_export.setText("Export JSON")
        self.btn_delete = QToolButton()
        self.btn_delete.setText("Delete")

        self.btn_new_idea.clicked.connect(self.clear_form)
        self.btn_export.clicked.connect(self.export_selected_idea)
        self.btn_delete.clicked.connect(self.delete_selected_idea)

        library_controls_layout.addWidget(self.btn_new_idea)
        library_controls_layout.addWidget(self.btn_export)
        library_controls_layout.addWidget(self.btn_delete)
        library_controls_layout.addStretch(1)

        left_layout.addWidget(library_controls)
        left_layout.addWidget(self.lbl_library_empty)
        left_layout.addWidget(self.library_list, 1)

        # Right: form
        form_panel = QWidget()
        form_layout = QVBoxLayout(form_panel)
        form_layout.setContentsMargins(8, 8, 8, 8)
        form_layout.setSpacing(10)

        form_layout.addWidget(QLabel("<h2>Craft Your Next Book</h2>"))

        self.field_edits: Dict[str, Any] = {}

        # 1. Core Identity
        grp_core = QGroupBox("1. Core Identity")
        core_form = QFormLayout(grp_core)
        core_form.addRow("Title *", self._make_line_edit("title", "Working title"))
        core_form.addRow("Subtitle", self._make_line_edit("subtitle", "Optional subtitle"))
        core_form.addRow("Author *", self._make_line_edit("author", "Pen name"))

        self.combo_status = QComboBox()
        self.combo_status.addItems(list(STATUS_CHOICES))
        self.combo_status.currentTextChanged.connect(lambda text: self._on_field_changed("status", text))
        core_form.addRow("Status", self.combo_status)
        form_layout.addWidget(grp_core)

        # 2. Audience & Positioning
        grp_audience = QGroupBox("2. Audience && Positioning")
        audience_form = QFormLayout(grp_audience)
        audience_form.addRow("Primary Genre", self._make_line_edit("genre", "Speculative thriller, cozy fantasy..."))
        audience_form.addRow("Target Audience", self._make_line_edit("audience", "Young adults, business leaders..."))
        audience_form.addRow("Narrative Tone", self._make_line_edit("tone", "Playful, investigative, poetic..."))
        audience_form.addRow("Word Count Goal", self._make_line_edit("word_goal", "80,000"))
        form_layout.addWidget(grp_audience)

        # 3. Narrative Blueprint
        grp_blueprint = QGroupBox("3. Narrative Blueprint")
        blueprint_form = QFormLayout(grp_blueprint)
        blueprint_form.addRow("Elevator Hook", self._make_text_edit("hook", "What makes readers grab this from the shelf?"))
        blueprint_form.addRow("Story Synopsis", self._make_text_edit("synopsis", "Summarize the journey and stakes."))

        self.edit_keywords = QLineEdit()
        self.edit_keywords.setPlaceholderText("Comma separated: resilience, identity, myth")
        self.edit_keywords.textChanged.connect(self._on_keywords_changed)
        blueprint_form.addRow("Themes && Keywords", self.edit_keywords)

        self.lbl_keywords = QLabel("")
        self.lbl_keywords.setWordWrap(True)
        blueprint_form.addRow("", self.lbl_keywords)
        form_layout.addWidget(grp_blueprint)

        # 4. Chapter Path
        grp_chapters = QGroupBox("4. Chapter Path")
        chapters_layout = QVBoxLayout(grp_chapters)
        chapter_form = QFormLayout()

        self.edit_chapter_title = QLineEdit()
        self.edit_chapter_title.setPlaceholderText("The spark")
        self.edit_chapter_title.textChanged.connect(self._on_chapter_draft_changed)
        self.edit_chapter_focus = QLineEdit()
        self.edit_chapter_focus.setPlaceholderText("Introduce protagonist, inciting incident")
        self.edit_chapter_focus.textChanged.connect(self._on_chapter_draft_changed)
        chapter_form.addRow("Chapter Title", self.edit_chapter_title)
        chapter_form.addRow("Focus / Beats", self.edit_chapter_focus)
        chapters_layout.addLayout(chapter_form)

        chapter_buttons = QHBoxLayout()
        self.btn_add_chapter = QPushButton("+ Add Chapter")
        self.btn_add_chapter.clicked.connect(self.add_chapter)
        self.btn_remove_chapter = QPushButton("Remove")
        self.btn_remove_chapter.clicked.connect(self.remove_selected_chapter)
        chapter_buttons.addWidget(self.btn_add_chapter)
        chapter_buttons.addWidget(self.btn_remove_chapter)
        chapter_buttons.addStretch(1)
        chapters_layout.addLayout(chapter_buttons)

        self.chapter_list = QListWidget()
        self.chapter_list.setSelectionMode(QAbstractItemView.SingleSelection)
        self.chapter_list.itemSelectionChanged.connect(self._update_actions)
        chapters_layout.addWidget(self.chapter_list)
        form_layout.addWidget(grp_chapters)

        # Submit row
        submit_row = QHBoxLayout()
        self.btn_submit = QPushButton("Save Book Idea")
        self.btn_submit.setDefault(True)
        self.btn_submit.clicked.connect(self.submit_idea)
        self.btn_clear = QPushButton("Clear Form")
        self.btn_clear.clicked.connect(self.clear_form)
        submit_row.addWidget(self.btn_submit)
        submit_row.addWidget(self.btn_clear)
        submit_row.addStretch(1)
        submit_row.addWidget(QLabel("Autosaves locally • use Export to share JSON"))
        form_layout.addLayout(submit_row)
        form_layout.addStretch(1)

        scroll = QScrollArea()
        scroll.setWidgetResizable(True)
        scroll.setWidget(form_panel)

        main_splitter.addWidget(left_panel)
        main_splitter.addWidget(scroll)
        main_splitter.setStretchFactor(0, 1)
        main_splitter.setStretchFactor(1, 2)

        self.statusBar()

    def _make_line_edit(self, name: str, placeholder: str) -> QLineEdit:
        edit = QLineEdit()
        edit.setPlaceholderText(placeholder)
        edit.textChanged.connect(lambda text, name=name: self._on_field_changed(name, text))
        self.field_edits[name] = edit
        return edit

    def _make_text_edit(self, name: str, placeholder: str) -> QPlainTextEdit:
        edit = QPlainTextEdit()
        edit.setPlaceholderText(placeholder)
        edit.setFixedHeight(90)
        edit.textChanged.connect(lambda name=name, edit=edit: self._on_field_changed(name, edit.toPlainText()))
        self.field_edits[name] = edit
        return edit

    # ---------------- Form <-> editor ----------------
    def _on_field_changed(self, name: str, value: str) -> None:
        if self._loading_ui:
            return
        self.editor.update_field(name, value)

    def _on_keywords_changed(self, text: str) -> None:
        if self._loading_ui:
            return
        self.editor.set_keyword_input(text)
        self._update_keyword_preview()

    def _on_chapter_draft_changed(self) -> None:
        if self._loading_ui:
            return
        self.editor.set_chapter_draft(
            title=self.edit_chapter_title.text(),
            focus=self.edit_chapter_focus.text(),
        )

    def _update_keyword_preview(self) -> None:
        keywords = self.editor.form.keywords
        self.lbl_keywords.setText(" · ".join(keywords) if keywords else "")

    def _load_form_to_ui(self) -> None:
        form = self.editor.form
        self._loading_ui = True
        try:
            for name, edit in self.field_edits.items():
                value = getattr(form, name) or ""
                if isinstance(edit, QPlainTextEdit):
                    edit.setPlainText(value)
                else:
                    edit.setText(value)

            self.combo_status.setCurrentText(normalize_status(form.status))
            self.edit_keywords.setText(self.editor.keyword_input)
            self.edit_chapter_title.setText(self.editor.chapter_draft.title)
            self.edit_chapter_focus.setText(self.editor.chapter_draft.focus)
            self._refresh_chapters()
            self._update_keyword_preview()
        finally:
            self._loading_ui = False

        self.btn_submit.setText("Update Idea" if self.editor.is_editing else "Save Book Idea")
        self._update_actions()

    def _refresh_chapters(self) -> None:
        self.chapter_list.clear()
        for ch in self.editor.form.chapters:
            item = QListWidgetItem(chapter_label(ch))
            item.setData(self.CHAPTER_ID_ROLE, ch.id)
            self.chapter_list.addItem(item)

    def _update_actions(self) -> None:
        has_idea = self.library_list.currentItem() is not None and bool(self.library_list.selectedItems())
        self.btn_export.setEnabled(has_idea)
        self.btn_delete.setEnabled(has_idea)
        self.btn_remove_chapter.setEnabled(bool(self.chapter_list.selectedItems()))

    # ---------------- Library ----------------
    def _refresh_library(self) -> None:
        self.library_list.blockSignals(True)
        try:
            self.library_list.clear()
            selected_item: Optional[QListWidgetItem] = None
            for idea in self.store:
                item = QListWidgetItem(library_label(idea))
                item.setData(self.IDEA_ID_ROLE, idea.id)
                item.setToolTip(library_tooltip(idea))
                self.library_list.addItem(item)
                if idea.id == self.editor.selected_id:
                    selected_item = item

            if selected_item is not None:
                self.library_list.setCurrentItem(selected_item)
            else:
                self.library_list.clearSelection()
        finally:
            self.library_list.blockSignals(False)

        self.lbl_library_empty.setVisible(len(self.store) == 0)
        self._update_actions()

    def _on_store_changed(self, store: IdeaStore) -> None:
        self.editor.sync_selection()
        self._refresh_library()

    def _on_library_selection_changed(self) -> None:
        item = self.library_list.currentItem()
        if not item:
            self._update_actions()
            return

        idea_id = item.data(self.IDEA_ID_ROLE)
        if idea_id and str(idea_id) != self.editor.selected_id:
            self.editor.select(str(idea_id))
            self._load_form_to_ui()
        self._update_actions()

    def _on_library_context_menu(self, pos) -> None:
        item = self.library_list.itemAt(pos)
        if not item:
            return
        idea_id = str(item.data(self.IDEA_ID_ROLE) or "")
        if not idea_id:
            return

        menu = QMenu(self)
        act_export = menu.addAction("Export JSON")
        act_delete = menu.addAction("Delete")

        chosen = menu.exec_(self.library_list.viewport().mapToGlobal(pos))
        if chosen == act_export:
            self.export_idea(idea_id)
        elif chosen == act_delete:
            self.delete_idea(idea_id)

    def _current_library_idea(self) -> Optional[BookIdea]:
        item = self.library_list.currentItem()
        if not item or not item.isSelected():
            return None
        return self.store.get(item.data(self.IDEA_ID_ROLE))

    # ---------------- Actions ----------------
    def add_chapter(self) -> None:
        self._on_chapter_draft_changed()
        if self.editor.add_chapter() is None:
            self.statusBar().showMessage("Give the chapter a title or a focus first.", 3000)
            return
        self._load_form_to_ui()

    def remove_selected_chapter(self) -> None:
        item = self.chapter_list.currentItem()
        if not item:
            return
        self.editor.remove_chapter(str(item.data(self.CHAPTER_ID_ROLE)))
        self._refresh_chapters()
        self._update_actions()

    def submit_idea(self) -> None:
        idea = self.editor.commit()
        self._refresh_library()
        self._load_form_to_ui()
        self.statusBar().showMessage(f"Saved '{idea.title}'", 3000)

    def clear_form(self) -> None:
        self.editor.reset()
        self._refresh_library()
        self._load_form_to_ui()

    def delete_selected_idea(self) -> None:
        idea = self._current_library_idea()
        if idea is not None:
            self.delete_idea(idea.id)

    def delete_idea(self, idea_id: str) -> None:
        idea = self.store.get(idea_id)
        if idea is None:
            return

        reply = QMessageBox.question(
            self,
            "Delete Idea",
            f"Delete '{idea.title}' and its chapter outline?\n(This cannot be undone.)",
            QMessageBox.Yes | QMessageBox.No,
            QMessageBox.No,
        )
        if reply != QMessageBox.Yes:
            return

        was_selected = idea.id == self.editor.selected_id
        self.editor.delete_idea(idea.id)
        self._refresh_library()
        if was_selected:
            self._load_form_to_ui()

    def export_selected_idea(self) -> None:
        idea = self._current_library_idea()
        if idea is not None:
            self.export_idea(idea.id)

    def export_idea(self, idea_id: str) -> None:
        idea = self.store.get(idea_id)
        if idea is None:
            return

        result = self.exporter.export(idea)
        if result.copied:
            self.statusBar().showMessage(f"Copied JSON for '{idea.title}' to the clipboard.", 3000)
        elif result.saved:
            QMessageBox.information(self, "Export JSON", f"Saved JSON to download instead.\n\n{result.path}")
        elif result.method == EXPORT_CANCELLED:
            self.statusBar().showMessage("Export cancelled.", 3000)
        else:
            QMessageBox.warning(self, "Export JSON", f"Export failed: {result.error}")

    # ---------------- Export collaborators ----------------
    def _copy_to_clipboard(self, text: str) -> None:
        clipboard = QApplication.clipboard()
        if clipboard is None:
            raise ClipboardError("no clipboard available")
        clipboard.setText(text)
        if clipboard.text() != text:
            raise ClipboardError("clipboard did not accept the export text")

    def _save_export_dialog(self, filename: str, text: str) -> Optional[str]:
        path, _ = QFileDialog.getSaveFileName(
            self,
            "Export Book Idea",
            os.path.join(os.path.abspath(self.data_dir), filename),
            "JSON (*.json)",
        )
        if not path:
            return None
        return save_export_file(path, text)

    # ---------------- Save warning ----------------
    def _on_write_failed(self, error: Exception) -> None:
        now = time.time()
        if (now - self._last_save_warn_ts) < SAVE_WARN_COOLDOWN_SEC:
            return
        self._last_save_warn_ts = now
        QMessageBox.warning(
            self,
            "Save warning",
            "Saving the library failed (the file may be locked by another program or the disk is full).\n\n"
            f"{error}\n\n"
            "Your ideas are still open in this window; the next change will try to save again.",
        )


def main() -> None:
    _ensure_dir(DEFAULT_DATA_DIR)
    setup_logging(LOG_DIR)
    install_excepthook()

    app = QApplication(sys.argv)
    win = MainWindow()
    win.show()
    sys.exit(app.exec_())


if __name__ == "__main__":
    main()
