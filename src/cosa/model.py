"""Model definitions, the collection-level API and the instance lifecycle."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, fields
from typing import Any

from bson import ObjectId
from pydantic import ValidationError as PydanticValidationError

from cosa.connection import Connection
from cosa.connection import connection as default_connection
from cosa.cursor import Cursor
from cosa.db.interfaces import Database, WriteResult
from cosa.definitions import ModelDefinition, PropertyDefinition
from cosa.errors import ConfigurationError, ConflictError, DuplicateKeyError, UsageError
from cosa.etag import compute_etag
from cosa.immutable import Immutable, create, is_immutable_type, plain_copy, to_plain
from cosa.paths import delete_path, get_path, has_path, parse_path, set_path
from cosa.schema import CompiledSchema
from cosa.serialization import document_to_json, remove_meta
from cosa.session import create_session
from cosa.utils import maybe_await

logger = logging.getLogger(__name__)

VALIDATION_FLAGS = ("abort_early", "convert", "allow_unknown", "skip_functions", "strip_unknown")

_NO_VALUE = object()
_background_tasks: set[asyncio.Task[Any]] = set()


@dataclass(frozen=True)
class ModelHooks:
    """Lifecycle hooks a model declares, resolved once when the model is defined."""

    before_save: Callable[..., Any] | None = None
    after_save: Callable[..., Any] | None = None
    after_save_commit: Callable[..., Any] | None = None
    after_save_abort: Callable[..., Any] | None = None
    before_remove: Callable[..., Any] | None = None
    after_remove: Callable[..., Any] | None = None
    after_remove_commit: Callable[..., Any] | None = None
    after_remove_abort: Callable[..., Any] | None = None
    transform_duplicate_key_error: Callable[..., Any] | None = None

    @classmethod
    def split(
        cls, methods: Mapping[str, Callable[..., Any]]
    ) -> tuple[ModelHooks, dict[str, Callable[..., Any]]]:
        """Separate hook declarations from ordinary instance methods."""

        names = {field.name for field in fields(cls)}
        hooks = cls(**{name: func for name, func in methods.items() if name in names})
        rest = {name: func for name, func in methods.items() if name not in names}
        return hooks, rest


def _spawn(coroutine: Any, description: str) -> None:
    task = asyncio.get_running_loop().create_task(coroutine)
    _background_tasks.add(task)

    def finished(done: asyncio.Task[Any]) -> None:
        _background_tasks.discard(done)
        if not done.cancelled() and done.exception() is not None:
            logger.warning("%s failed: %s", description, done.exception(), exc_info=done.exception())

    task.add_done_callback(finished)


async def wait_for_background_hooks() -> None:
    """Wait until every after-hook chain started without a wait flag has finished."""

    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)


def _join_path(path: str | Sequence[str | int]) -> str:
    return ".".join(parse_path(path))


def _mark_as_modified(
    document: dict[str, Any],
    paths: Iterable[str | Sequence[str | int]],
    original: Immutable,
) -> None:
    modified: list[str] = list(document.get("__modified") or [])
    for raw in paths:
        path = _join_path(raw)
        covered = any(path == value or path.startswith(f"{value}.") for value in modified)
        modified = [value for value in modified if not value.startswith(f"{path}.")]
        if not covered:
            modified.append(path)
    document["__modified"] = modified

    if document.get("_id") is not None:
        snapshot = plain_copy(original.to_object())
        document["__original"] = snapshot.get("__original") or remove_meta(snapshot)


def _session_queue(session: Any, name: str) -> Callable[[Callable[[], Any]], None]:
    register = getattr(session, name, None)
    if register is None:
        msg = "Sessions used with commit or abort hooks must come from create_session()"
        raise UsageError(msg)
    return register


class Model:
    """Collection-level API produced by :func:`define`.

    ``create`` builds unsaved instances; the query methods merge the global
    ``where`` filter and wrap every returned row as an instance.
    """

    def __init__(self, definition: ModelDefinition, *, connection: Connection | None = None) -> None:
        self._source = definition
        self._connection = connection
        properties = {
            **definition.properties,
            "_id": PropertyDefinition(type="objectid"),
            "_etag": PropertyDefinition(type="string"),
            "__modified": PropertyDefinition(
                type="array", items=PropertyDefinition(type="string"), enumerable=False, default=[]
            ),
            "__original": PropertyDefinition(type="any", enumerable=False, default=None),
        }
        self._definition = definition.model_copy(update={"properties": properties})
        self._schema = CompiledSchema(
            properties, name=definition.name or definition.collection or "Document"
        )
        self._hooks, methods = ModelHooks.split(definition.methods)
        self._instance_definition = self._definition.as_object_definition(
            {**methods, **_instance_methods(self)}
        )

    @property
    def name(self) -> str | None:
        return self._definition.name

    @property
    def collection_name(self) -> str | None:
        return self._definition.collection

    @property
    def definition(self) -> ModelDefinition:
        return self._definition

    @property
    def hooks(self) -> ModelHooks:
        return self._hooks

    @property
    def schema(self) -> CompiledSchema:
        return self._schema

    @property
    def instance_definition(self) -> PropertyDefinition:
        return self._instance_definition

    @property
    def connection(self) -> Connection:
        return self._connection or default_connection

    def __repr__(self) -> str:
        return f"<Model {self.name or 'object'} collection={self.collection_name!r}>"

    def create(self, data: Mapping[str, Any] | None = None) -> Any:
        """Build a new, unsaved instance."""

        return create({} if data is None else data, definition=self._instance_definition)

    def extend(
        self,
        subdefinition: ModelDefinition | Mapping[str, Any] | None = None,
        **overrides: Any,
    ) -> Model:
        """Define a new model layering ``subdefinition`` over this one."""

        child = _parse_definition(subdefinition, overrides)
        return define(self._source.merge(child), connection=self._connection)

    def is_a(self, value: Any) -> bool:
        return is_immutable_type(value, self.name or "object")

    async def database(self) -> Database:
        return await self.connection.get_database()

    def _collection(self) -> str:
        if not self.collection_name:
            msg = f"Model {self.name or 'object'} is abstract and has no collection"
            raise UsageError(msg)
        return self.collection_name

    def _scoped(self, query: Mapping[str, Any] | None, options: dict[str, Any]) -> dict[str, Any]:
        bypass = options.pop("bypass_global_where", False)
        unrestricted = options.pop("unrestricted", False)
        scoped = dict(to_plain(query or {}))
        if self._definition.where and not bypass:
            scoped = {**self._definition.where, **scoped}
        if not scoped and not unrestricted:
            msg = f"Refusing an unrestricted query on {self.collection_name}; pass unrestricted=True"
            raise UsageError(msg)
        return scoped

    def _wrap(self, document: Mapping[str, Any]) -> Any:
        return create(document, definition=self._instance_definition)

    async def count(self, query: Mapping[str, Any] | None = None, **options: Any) -> int:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("counting %s in %s", scoped, collection)
        db = await self.database()
        return await db.find(collection, scoped, count=True, **options)

    async def exists(self, query: Mapping[str, Any] | None = None, **options: Any) -> bool:
        return await self.count(query, limit=1, **options) > 0

    async def find(
        self,
        query: Mapping[str, Any] | None = None,
        *,
        array: bool = False,
        **options: Any,
    ) -> Cursor | list[Any]:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("finding %s in %s", scoped, collection)
        db = await self.database()
        cursor = Cursor(await db.find(collection, scoped, **options), self._wrap)
        return await cursor.to_list() if array else cursor

    async def find_one(self, query: Mapping[str, Any] | None = None, **options: Any) -> Any | None:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("finding one %s in %s", scoped, collection)
        db = await self.database()
        document = await db.find(collection, scoped, find_one=True, **options)
        return None if document is None else self._wrap(document)

    async def update(
        self,
        query: Mapping[str, Any] | None,
        update: Mapping[str, Any],
        *,
        auto_set: bool = True,
        **options: Any,
    ) -> WriteResult:
        collection = self._collection()
        scoped = self._scoped(query, options)
        changes = to_plain(update)
        if auto_set:
            changes = {"$set": changes}
        logger.debug("updating %s in %s", scoped, collection)
        db = await self.database()
        return await db.update(collection, scoped, changes, **options)

    async def remove(self, query: Mapping[str, Any] | None = None, **options: Any) -> WriteResult:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("removing %s from %s", scoped, collection)
        db = await self.database()
        return await db.remove(collection, scoped, **options)

    async def distinct(
        self, key: str, query: Mapping[str, Any] | None = None, **options: Any
    ) -> list[Any]:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("finding distinct %r %s in %s", key, scoped, collection)
        db = await self.database()
        return await db.distinct(collection, key, scoped, **options)

    async def aggregate(self, pipeline: Sequence[Mapping[str, Any]], **options: Any) -> Any:
        collection = self._collection()
        logger.debug("aggregating %s in %s", pipeline, collection)
        db = await self.database()
        return await db.aggregate(collection, to_plain(pipeline), **options)

    async def project(
        self,
        query: Mapping[str, Any] | None,
        projection: Mapping[str, Any],
        *,
        array: bool = False,
        **options: Any,
    ) -> Any:
        collection = self._collection()
        scoped = self._scoped(query, options)
        logger.debug("projecting %s with %s in %s", scoped, projection, collection)
        db = await self.database()
        cursor = (await db.find(collection, scoped, **options)).project(projection)
        return await cursor.to_list() if array else cursor

    async def _run_after_hooks(
        self,
        instance: Any,
        hooks: tuple[Callable[..., Any] | None, Callable[..., Any] | None, Callable[..., Any] | None],
        args: tuple[Any, ...],
        options: dict[str, Any],
        wait: bool,
        description: str,
    ) -> None:
        inline, on_commit, on_abort = hooks
        session = options.get("session")
        if session is not None:
            if inline is not None:
                await maybe_await(inline(instance, *args))
            if on_commit is not None:
                _session_queue(session, "register_after_commit")(
                    functools.partial(on_commit, instance, *args)
                )
            if on_abort is not None:
                _session_queue(session, "register_after_abort")(
                    functools.partial(on_abort, instance, *args)
                )
            return
        if inline is None and on_commit is None:
            return

        async def chain() -> None:
            if inline is not None:
                await maybe_await(inline(instance, *args))
            if on_commit is not None:
                await maybe_await(on_commit(instance, *args))

        if wait:
            await chain()
        else:
            _spawn(chain(), description)

    async def _duplicate_key(
        self, document: dict[str, Any], error: DuplicateKeyError
    ) -> Exception | None:
        transform = self._hooks.transform_duplicate_key_error
        if transform is None:
            return None
        return await maybe_await(transform(document, error))

    async def _save(
        self,
        instance: Any,
        options: dict[str, Any],
        explicit_id: ObjectId | None = None,
    ) -> Any:
        if not instance.is_new() and not instance.is_modified():
            return instance
        if not options.pop("create_session", False):
            return await self._write(instance, options, explicit_id)
        session = await create_session(self._connection)
        await session.start_transaction()
        options["session"] = session
        try:
            saved = await self._write(instance, options, explicit_id)
        except BaseException:
            await session.abort_transaction()
            raise
        errors = await session.commit_transaction()
        if errors:
            # the write is committed; report the first failed after-commit hook
            raise errors[0]
        return saved

    async def _write(
        self,
        instance: Any,
        options: dict[str, Any],
        explicit_id: ObjectId | None,
    ) -> Any:
        collection = self._collection()
        session = options.get("session")
        document = plain_copy(instance.to_object())
        if self._hooks.before_save is not None:
            await maybe_await(self._hooks.before_save(document, options))
        document = await self._schema.validate(
            document, **{flag: options[flag] for flag in VALIDATION_FLAGS if flag in options}
        )
        previous = document.get("__original") or None
        document = remove_meta(document)
        etag = compute_etag(document)
        db = await self.database()

        if not instance.is_new():
            query = {"_id": document["_id"], "_etag": document.get("_etag")}
            document["_etag"] = etag
            logger.debug("updating %s in %s", document["_id"], collection)
            try:
                result = await db.replace(collection, query, document, session=session)
            except DuplicateKeyError as exc:
                replacement = await self._duplicate_key(document, exc)
                if replacement is None:
                    raise
                raise replacement from exc
            if result.matched_count == 0:
                msg = "Document update conflict"
                raise ConflictError(msg)
            saved = instance.set(
                {"_etag": etag, "__modified": [], "__original": None}, silent=True
            )
        else:
            document["_etag"] = etag
            if explicit_id is not None:
                document["_id"] = explicit_id
            logger.debug("inserting into %s", collection)
            try:
                result = await db.insert(collection, document, session=session)
            except DuplicateKeyError as exc:
                replacement = await self._duplicate_key(document, exc)
                if replacement is None:
                    raise
                raise replacement from exc
            logger.debug("insert into %s successful: %s", collection, result.inserted_id)
            saved = self._wrap(result.ops[0])

        await self._run_after_hooks(
            saved,
            (self._hooks.after_save, self._hooks.after_save_commit, self._hooks.after_save_abort),
            (previous, options),
            options,
            bool(options.get("wait_after_save", self._definition.wait_after_save)),
            f"after save hooks for {collection}",
        )
        return saved

    async def _remove(self, instance: Any, options: dict[str, Any]) -> WriteResult:
        collection = self._collection()
        if instance.is_new():
            msg = "Cannot remove a document that was never saved"
            raise UsageError(msg)
        plain = instance.to_object()
        query = {"_id": plain["_id"], "_etag": plain.get("_etag")}
        if self._hooks.before_remove is not None:
            await maybe_await(self._hooks.before_remove(instance, options))
        logger.debug("removing %s from %s", plain["_id"], collection)
        db = await self.database()
        result = await db.remove(collection, query, session=options.get("session"))
        if result.deleted_count == 0:
            msg = "Document remove conflict"
            raise ConflictError(msg)
        logger.debug("remove from %s successful", collection)
        await self._run_after_hooks(
            instance,
            (
                self._hooks.after_remove,
                self._hooks.after_remove_commit,
                self._hooks.after_remove_abort,
            ),
            (options,),
            options,
            bool(options.get("wait_after_remove", self._definition.wait_after_remove)),
            f"after remove hooks for {collection}",
        )
        return result

    async def _reload(self, instance: Any, options: dict[str, Any]) -> Any | None:
        collection = self._collection()
        plain = instance.to_object()
        logger.debug("reloading %s in %s", plain.get("_id"), collection)
        db = await self.database()
        document = await db.find(
            collection, {"_id": plain.get("_id")}, find_one=True, session=options.get("session")
        )
        return None if document is None else self._wrap(document)


def _instance_methods(model: Model) -> dict[str, Callable[..., Any]]:
    """Methods installed on every instance of ``model``; each takes the instance first."""

    def get(self: Any, path: str | Sequence[str | int]) -> Any:
        return get_path(self, path)

    def has(self: Any, path: str | Sequence[str | int]) -> bool:
        return has_path(self, path)

    def set_(
        self: Any,
        path_or_values: str | Sequence[str | int] | Mapping[str, Any],
        value: Any = _NO_VALUE,
        *,
        silent: bool = False,
    ) -> Any:
        if isinstance(path_or_values, Mapping):
            values = plain_copy(path_or_values)
            paths: list[Any] = list(values)
        elif value is _NO_VALUE:
            msg = "set() with a path requires a value"
            raise UsageError(msg)
        else:
            paths = [path_or_values]

        def apply(document: dict[str, Any]) -> None:
            if isinstance(path_or_values, Mapping):
                document.update(values)
            else:
                set_path(document, path_or_values, plain_copy(value))
            if not silent:
                _mark_as_modified(document, paths, self)

        return self.mutate(apply)

    def del_(self: Any, path_or_paths: str | Iterable[str]) -> Any:
        paths = [path_or_paths] if isinstance(path_or_paths, str) else list(path_or_paths)

        def apply(document: dict[str, Any]) -> None:
            for path in paths:
                delete_path(document, path)
            _mark_as_modified(document, paths, self)

        return self.mutate(apply)

    def is_(self: Any, other: Any) -> bool:
        if self is other:
            return True
        if not isinstance(other, Immutable) or self._type != other._type:
            return False
        own_id = self.to_object().get("_id")
        other_id = other.to_object().get("_id")
        if not own_id or not other_id:
            return False
        return str(own_id) == str(other_id)

    def equals(self: Any, other: Any) -> bool:
        if self is other:
            return True
        return (
            self.is_(other)
            and self.to_object().get("_etag") == other.to_object().get("_etag")
            and not self.is_modified()
            and not other.is_modified()
        )

    def is_new(self: Any) -> bool:
        return self.to_object().get("_id") is None

    def is_modified(self: Any, path: str | Sequence[str | int] | None = None) -> bool:
        modified = self.to_object().get("__modified") or []
        if path is None:
            return len(modified) > 0
        target = _join_path(path)
        return any(
            value == target
            or value.startswith(f"{target}.")
            or target.startswith(f"{value}.")
            for value in modified
        )

    def to_json(
        self: Any,
        *,
        virtuals: bool = True,
        extended: bool = True,
        exclude: Iterable[str] | None = None,
        include: Iterable[str] | None = None,
        transform: Callable[[dict[str, Any]], Any] | None = None,
    ) -> Any:
        return document_to_json(
            self.to_object(),
            model.instance_definition,
            virtuals=virtuals,
            extended=extended,
            exclude=exclude,
            include=include,
            transform=transform,
        )

    async def validate(self: Any, **options: Any) -> dict[str, Any]:
        return await model.schema.validate(self.to_object(), **options)

    async def save(self: Any, **options: Any) -> Any:
        return await model._save(self, dict(options))

    async def save_with_id(self: Any, explicit_id: Any, **options: Any) -> Any:
        if not self.is_new():
            msg = "save_with_id must receive a newly created object"
            raise UsageError(msg)
        if not isinstance(explicit_id, ObjectId):
            explicit_id = ObjectId(explicit_id)
        return await model._save(self, dict(options), explicit_id)

    async def remove(self: Any, **options: Any) -> WriteResult:
        return await model._remove(self, dict(options))

    async def reload(self: Any, **options: Any) -> Any | None:
        return await model._reload(self, dict(options))

    return {
        "get": get,
        "has": has,
        "set": set_,
        "del_": del_,
        "is_": is_,
        "equals": equals,
        "is_new": is_new,
        "is_modified": is_modified,
        "to_json": to_json,
        "validate": validate,
        "save": save,
        "save_with_id": save_with_id,
        "remove": remove,
        "reload": reload,
    }


def _parse_definition(
    definition: ModelDefinition | Mapping[str, Any] | None,
    overrides: Mapping[str, Any],
) -> ModelDefinition:
    if isinstance(definition, ModelDefinition):
        return definition.model_copy(update=dict(overrides)) if overrides else definition
    try:
        return ModelDefinition.model_validate({**(definition or {}), **overrides})
    except PydanticValidationError as exc:
        msg = f"Invalid model definition: {exc}"
        raise ConfigurationError(msg) from exc


def define(
    definition: ModelDefinition | Mapping[str, Any] | None = None,
    *,
    connection: Connection | None = None,
    **overrides: Any,
) -> Model:
    """Compile a model definition.

    Raises ``ConfigurationError`` when the definition has no collection and
    is not abstract, or declares an unknown keyword or property type.
    """

    parsed = _parse_definition(definition, overrides)
    if not parsed.collection and not parsed.abstract:
        msg = "A model must have a collection unless defined as abstract"
        raise ConfigurationError(msg)
    return Model(parsed, connection=connection)


__all__ = [
    "Model",
    "ModelHooks",
    "VALIDATION_FLAGS",
    "define",
    "wait_for_background_hooks",
]
