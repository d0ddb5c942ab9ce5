"""Resource Orchestrator - Create, Read, Update, Delete and Import of one resource.

Phase Flow:
----------
Each phase is a short state machine tracked by PhaseTracker:

    pending → prechecking → issuing → polling → post-reading → done | failed | gone

- create: disjoint check, optional existence check, precheck, create call,
  id derivation, optional poll, optional post-create read, then a read to
  settle the output
- read: GET the id; 404 or an empty selector match means gone
- update: skipped when neither body nor ephemeral body changed; otherwise
  precheck, update call (merge patch for PATCH), optional poll, read
- delete: precheck, delete call (404 counts as success), optional poll
- import: a read seeded from an import descriptor

State Rules:
-----------
- ``state.body`` is the body as last sent, never merged with the
  ephemeral body and never replaced by the server echo
- ``state.output`` is the latest read response, filtered by output_attrs,
  with ephemeral body paths removed
- The ephemeral body is tracked only by hash and key skeleton in private state
"""

import copy
from dataclasses import replace
from typing import Any
from urllib.parse import urlsplit

import structlog

from ..api.client import NO_CONTENT, RestClient
from ..api.response import RequestOptions, Response, expand_header, expand_query, take_or_self
from ..config import ResourceDefaults
from ..core import jsonquery, shaper
from ..core.expander import ExpansionContext, expand, expand_json, expand_path
from ..execution.poller import Pollable
from ..execution.precheck import precheck
from ..models.resource import ImportSpec, PollSpec, ResourceConfig
from ..models.state import ResourceState, UpdatePlan
from ..persistence.private_state import PrivateState, ephemeral_changed, record_ephemeral
from ..utils.cancellation import CancelScope
from ..utils.exceptions import (
    ConfigError,
    DisjointViolationError,
    GoneError,
    ResourceExistsError,
    ShapingError,
)
from .phase import PhaseState, PhaseTracker

logger = structlog.get_logger(__name__)


def check_disjoint(body: Any, ephemeral_body: Any) -> None:
    """
    Ensure the body and the ephemeral body share no JSON path.

    Raises:
        DisjointViolationError: If any path is present in both.
    """
    if not shaper.disjoint(body, ephemeral_body):
        raise DisjointViolationError()


def relative_location(location: str, base_url: str) -> str:
    """Turn a Location header into a path relative to the base URL."""
    base_path = urlsplit(base_url).path.rstrip("/")
    path = urlsplit(location).path
    if base_path and (path == base_path or path.startswith(base_path + "/")):
        path = path[len(base_path) :]
    return path.lstrip("/")


def _request_body(payload: Any) -> Any:
    return NO_CONTENT if payload is None else payload


class ResourceOrchestrator:
    """
    Drive the lifecycle phases of declaratively configured resources.

    The orchestrator holds no per-resource state: every phase takes the
    desired configuration and, except create and import, the recorded state,
    and returns the new state. One orchestrator may serve many resources
    concurrently.
    """

    def __init__(self, client: RestClient, defaults: ResourceDefaults | None = None) -> None:
        """
        Initialize the orchestrator.

        Args:
            client: Shared REST client.
            defaults: Provider-wide defaults for methods, merge patch, query and header.
        """
        self.client = client
        self.defaults = defaults or ResourceDefaults()

    def resolve(self, config: ResourceConfig) -> ResourceConfig:
        """Apply provider defaults to a resource configuration."""
        return config.with_defaults(self.defaults)

    # =========================================================================
    # Request helpers
    # =========================================================================

    def _options(self, config: ResourceConfig, phase: str, body: Any) -> RequestOptions:
        method = {
            "create": config.create_method,
            "read": config.read_method,
            "update": config.update_method,
            "delete": config.delete_method,
        }[phase]
        query = take_or_self(config.query, getattr(config, f"{phase}_query"))
        header = take_or_self(config.header, getattr(config, f"{phase}_header"))
        if body is not None:
            query = expand_query(query, body)
            header = expand_header(header, body)
        return RequestOptions(
            method=method or "",
            query=query,
            header=header,
            retry=config.retry.to_policy() if config.retry else None,
        )

    async def _poll(
        self,
        tracker: PhaseTracker,
        response: Response,
        spec: PollSpec,
        options: RequestOptions,
        context_body: Any,
        cancel: CancelScope,
        fallback_url: str | None = None,
    ) -> None:
        tracker.advance(PhaseState.POLLING)
        pollable = Pollable.from_response(
            response,
            spec,
            context_body=context_body,
            fallback_url=fallback_url,
            query=options.query,
            header=options.header,
        )
        await pollable.poll_until_done(self.client, cancel)

    # =========================================================================
    # Create
    # =========================================================================

    async def create(self, config: ResourceConfig, cancel: CancelScope | None = None) -> ResourceState:
        """
        Create the resource and return its first state.

        Args:
            config: Desired configuration.
            cancel: Cancellation signal.

        Returns:
            ResourceState: State settled by a read after creation.

        Raises:
            DisjointViolationError: If body and ephemeral_body overlap; nothing is sent.
            ResourceExistsError: If check_existence finds the object.
            HTTPStatusError: If the create call fails.
            GoneError: If the resource cannot be read back.
        """
        cancel = cancel or CancelScope()
        config = self.resolve(config)

        with PhaseTracker("create", config.path) as tracker:
            check_disjoint(config.body, config.ephemeral_body)
            options = self._options(config, "create", config.body)

            if config.check_existence:
                await self._check_existence(config, cancel)

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client,
                config.precheck_create,
                default_path=config.path,
                query=options.query,
                header=options.header,
                cancel=cancel,
            ):
                tracker.advance(PhaseState.ISSUING)
                payload = shaper.merge_bodies(config.body, config.ephemeral_body)
                response = await self.client.create(
                    config.path, _request_body(payload), options, cancel
                )
                response.raise_for_status("create")

                created = response.json_or_none()
                if config.create_selector:
                    found = jsonquery.get(created, config.create_selector)
                    if not found.exists:
                        raise ShapingError(
                            "create_selector matched nothing in the create response",
                            path=config.create_selector,
                        )
                    created = found.value

                resource_id = self.derive_id(config, response, created)
                logger.info("Resource created", id=resource_id, status=response.status_code)

                if config.poll_create:
                    await self._poll(
                        tracker,
                        response,
                        config.poll_create,
                        options,
                        created,
                        cancel,
                        fallback_url=self.client.url_for(resource_id),
                    )

                tracker.advance(PhaseState.POST_READING)
                if config.post_create_read:
                    resource_id, created = await self._post_create_read(
                        config, created, resource_id, cancel
                    )

                state = ResourceState(
                    id=resource_id,
                    path=config.path,
                    body=copy.deepcopy(config.body),
                    query=dict(config.query),
                    header=dict(config.header),
                    private=record_ephemeral(PrivateState(), config.ephemeral_body),
                ).with_output(created, config.use_sensitive_output)

                return await self._refresh(config, state, cancel, update_body=False)

    async def _check_existence(self, config: ResourceConfig, cancel: CancelScope) -> None:
        options = self._options(config, "read", config.body)
        response = await self.client.read(config.path, options, cancel)
        if not response.is_not_found:
            raise ResourceExistsError(config.path, response.status_code)

    def derive_id(self, config: ResourceConfig, response: Response, created: Any) -> str:
        """
        Derive the resource id from the create response.

        Tried in order: id_builder, read_path, name_path, the Location of a
        201, and finally the create path itself.

        Raises:
            UnresolvedReferenceError: If a template references a missing value.
            ShapingError: If name_path finds nothing.
        """
        context = ExpansionContext(path=config.path, body=created)
        if config.id_builder:
            return expand(config.id_builder, context)
        if config.read_path:
            return expand(config.read_path, context)
        if config.name_path:
            found = jsonquery.get(created, config.name_path)
            if not found.exists or found.text() == "":
                raise ShapingError("name_path matched nothing in the create response", path=config.name_path)
            return f"{config.path.rstrip('/')}/{found.text()}"
        location = response.headers.get("Location")
        if response.status_code == 201 and location:
            return relative_location(location, self.client.base_url)
        return config.path

    async def _post_create_read(
        self,
        config: ResourceConfig,
        created: Any,
        resource_id: str,
        cancel: CancelScope,
    ) -> tuple[str, Any]:
        descriptor = config.post_create_read
        assert descriptor is not None
        context = ExpansionContext(path=config.path, body=created, names={"id": resource_id})

        query = take_or_self(config.query, descriptor.query)
        header = take_or_self(config.header, descriptor.header)
        if created is not None:
            query = expand_query(query, created)
            header = expand_header(header, created)
        body = NO_CONTENT if descriptor.body is None else expand_json(descriptor.body, context)
        options = RequestOptions(
            method=descriptor.method,
            query=query,
            header=header,
            retry=config.retry.to_policy() if config.retry else None,
        )

        response = await self.client.read(expand(descriptor.path, context), options, cancel, body=body)
        response.raise_for_status("post-create read")

        document = response.json_or_none()
        if descriptor.selector:
            selector = expand(
                descriptor.selector, ExpansionContext(body=document, names={"id": resource_id})
            )
            found = jsonquery.get(document, selector)
            document = found.value if found.exists else None

        if config.read_path:
            resource_id = expand(config.read_path, ExpansionContext(path=config.path, body=document))
        logger.debug("Post-create read done", id=resource_id)
        return resource_id, document

    # =========================================================================
    # Read
    # =========================================================================

    async def read(
        self,
        config: ResourceConfig,
        state: ResourceState,
        cancel: CancelScope | None = None,
    ) -> ResourceState:
        """
        Refresh the state from the remote object.

        The refreshed body keeps the shape of the recorded one, with
        write-only attributes carried over from state.

        Raises:
            GoneError: If the object returned 404 or the selector matched nothing.
            HTTPStatusError: For any other failed read.
        """
        cancel = cancel or CancelScope()
        config = self.resolve(config)
        with PhaseTracker("read", state.id) as tracker:
            tracker.advance(PhaseState.ISSUING)
            return await self._refresh(config, state, cancel, update_body=True)

    async def _fetch(
        self,
        config: ResourceConfig,
        resource_id: str,
        context_body: Any,
        cancel: CancelScope,
    ) -> Any:
        options = self._options(config, "read", context_body)
        response = await self.client.read(resource_id, options, cancel)
        if response.is_not_found:
            logger.info("Resource not found", id=resource_id)
            raise GoneError(resource_id)
        response.raise_for_status("read")
        document = response.json_or_none()

        if config.read_selector:
            selector = config.read_selector
            if context_body is not None:
                context = ExpansionContext(body=context_body, names={"id": resource_id})
                selector = expand(selector, context)
            found = jsonquery.get(document, selector)
            if not found.exists:
                logger.info("Read selector matched nothing", id=resource_id, selector=selector)
                raise GoneError(resource_id, "read_selector matched nothing")
            document = found.value

        if config.read_response_template:
            rendered = expand(config.read_response_template, ExpansionContext(body=document))
            document = shaper.decode(rendered, "read_response_template result")
        return document

    def _project_output(self, config: ResourceConfig, document: Any, private: PrivateState) -> Any:
        output = shaper.filter_attrs(document, config.output_attrs)
        if private.eph_null is not None:
            output = shaper.difference(output, private.eph_null)
        return output

    async def _refresh(
        self,
        config: ResourceConfig,
        state: ResourceState,
        cancel: CancelScope,
        update_body: bool,
    ) -> ResourceState:
        context_body = state.current_output
        if context_body is None:
            context_body = state.body
        document = await self._fetch(config, state.id, context_body, cancel)

        refreshed = copy.deepcopy(state)
        if update_body and state.body is not None:
            body = shaper.intersect(state.body, document)
            refreshed.body = shaper.restore_paths(body, state.body, config.write_only_attrs)

        output = self._project_output(config, document, state.private)
        return refreshed.with_output(output, config.use_sensitive_output)

    # =========================================================================
    # Update
    # =========================================================================

    def plan_update(self, config: ResourceConfig, state: ResourceState) -> UpdatePlan:
        """
        Compare the recorded state with the desired configuration.

        Returns:
            UpdatePlan: What an update would send, and whether it must replace instead.
        """
        config = self.resolve(config)
        reasons = []
        if config.path != state.path:
            reasons.append(f"path changed from {state.path!r} to {config.path!r}")
        for attr in config.force_new_attrs:
            old = jsonquery.get(state.body, attr)
            new = jsonquery.get(config.body, attr)
            if old.exists != new.exists or not shaper.json_equal(old.value, new.value):
                reasons.append(f"{attr} changed")

        body_changed = not shaper.json_equal(state.body, config.body)
        plan = UpdatePlan(
            body_changed=body_changed,
            merge_patch=shaper.merge_patch_diff(state.body, config.body) if body_changed else {},
            ephemeral_changed=ephemeral_changed(state.private, config.ephemeral_body),
            replace_reasons=reasons,
        )
        logger.debug(
            "Planned update",
            id=state.id,
            body_changed=plan.body_changed,
            ephemeral_changed=plan.ephemeral_changed,
            requires_replace=plan.requires_replace,
        )
        return plan

    def build_update_payload(self, config: ResourceConfig, state: ResourceState) -> tuple[Any, bool]:
        """
        Build the update request body.

        Returns:
            tuple: The payload and whether it is an RFC 7396 merge patch.
        """
        merge_patch = config.update_method == "PATCH" and not config.merge_patch_disabled
        if merge_patch:
            payload = shaper.merge_patch_diff(state.body, config.body)
        else:
            payload = copy.deepcopy(config.body)
        if config.update_body_patches:
            payload = shaper.patch(
                payload,
                [
                    shaper.PatchItem(path=item.path, raw_json=item.raw_json, removed=item.removed)
                    for item in config.update_body_patches
                ],
            )
        return shaper.merge_bodies(payload, config.ephemeral_body), merge_patch

    async def update(
        self,
        config: ResourceConfig,
        state: ResourceState,
        cancel: CancelScope | None = None,
    ) -> ResourceState:
        """
        Bring the remote object in line with ``config``.

        No request is sent when neither the body nor the ephemeral body changed.

        Raises:
            DisjointViolationError: If body and ephemeral_body overlap; nothing is sent.
            ConfigError: If the change requires replacing the resource.
            HTTPStatusError: If the update call fails.
        """
        cancel = cancel or CancelScope()
        config = self.resolve(config)

        with PhaseTracker("update", state.id) as tracker:
            check_disjoint(config.body, config.ephemeral_body)
            plan = self.plan_update(config, state)
            if plan.requires_replace:
                raise ConfigError(
                    f"resource {state.id} must be replaced: {'; '.join(plan.replace_reasons)}"
                )
            if not plan.body_changed and not plan.ephemeral_changed:
                logger.info("No changes to apply", id=state.id)
                return state

            context_body = state.current_output
            options = self._options(config, "update", context_body)
            path = state.id
            if config.update_path:
                path = expand_path(
                    config.update_path, path=config.path, body=context_body, id=state.id
                )

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client,
                config.precheck_update,
                default_path=state.id,
                query=options.query,
                header=options.header,
                body=context_body,
                names={"id": state.id},
                cancel=cancel,
            ):
                tracker.advance(PhaseState.ISSUING)
                payload, options.merge_patch = self.build_update_payload(config, state)
                response = await self.client.update(path, _request_body(payload), options, cancel)
                response.raise_for_status("update")
                logger.info("Resource updated", id=state.id, status=response.status_code)

                if config.poll_update:
                    await self._poll(tracker, response, config.poll_update, options, context_body, cancel)

                tracker.advance(PhaseState.POST_READING)
                updated = replace(
                    state,
                    path=config.path,
                    body=copy.deepcopy(config.body),
                    query=dict(config.query),
                    header=dict(config.header),
                    private=record_ephemeral(state.private, config.ephemeral_body),
                )
                return await self._refresh(config, updated, cancel, update_body=False)

    # =========================================================================
    # Delete
    # =========================================================================

    def build_delete_body(self, config: ResourceConfig, state: ResourceState) -> Any:
        """Build the delete request body, NO_CONTENT when none is configured."""
        context = ExpansionContext(
            path=config.path, body=state.current_output, names={"id": state.id}
        )
        if config.delete_body is not None:
            body = expand_json(config.delete_body, context)
            return shaper.merge_bodies(body, config.ephemeral_body)
        if config.delete_body_raw is not None:
            return expand(config.delete_body_raw, context).encode()
        return NO_CONTENT

    async def delete(
        self,
        config: ResourceConfig,
        state: ResourceState,
        cancel: CancelScope | None = None,
    ) -> None:
        """
        Delete the remote object; an object already gone counts as deleted.

        Raises:
            HTTPStatusError: If the delete call fails with anything but 404.
            PollFailedError: If polling the deletion fails.
        """
        cancel = cancel or CancelScope()
        config = self.resolve(config)

        with PhaseTracker("delete", state.id) as tracker:
            context_body = state.current_output
            options = self._options(config, "delete", context_body)
            path = state.id
            if config.delete_path:
                path = expand_path(
                    config.delete_path, path=config.path, body=context_body, id=state.id
                )

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client,
                config.precheck_delete,
                default_path=state.id,
                query=options.query,
                header=options.header,
                body=context_body,
                names={"id": state.id},
                cancel=cancel,
            ):
                tracker.advance(PhaseState.ISSUING)
                body = self.build_delete_body(config, state)
                response = await self.client.delete(path, options, cancel, body=body)
                if response.is_not_found:
                    logger.info("Resource already gone", id=state.id)
                    return
                response.raise_for_status("delete")
                logger.info("Resource deleted", id=state.id, status=response.status_code)

                if config.poll_delete:
                    await self._poll(tracker, response, config.poll_delete, options, context_body, cancel)

    # =========================================================================
    # Import
    # =========================================================================

    async def import_state(
        self,
        spec: ImportSpec,
        base: ResourceConfig | None = None,
        cancel: CancelScope | None = None,
    ) -> ResourceState:
        """
        Adopt an existing remote object.

        With a body skeleton in the descriptor the read response is reduced
        to that shape; otherwise the whole response seeds the body.

        Args:
            spec: Import descriptor.
            base: Configuration the descriptor overlays.
            cancel: Cancellation signal.

        Returns:
            ResourceState: A state shaped like one produced by create.

        Raises:
            GoneError: If the object does not exist.
            ShapingError: If the body skeleton is malformed.
        """
        cancel = cancel or CancelScope()
        config = self.resolve(spec.to_config(base))

        with PhaseTracker("import", spec.id) as tracker:
            tracker.advance(PhaseState.ISSUING)
            document = await self._fetch(config, spec.id, spec.body, cancel)

            if spec.body is not None:
                body = shaper.intersect_for_import(spec.body, document)
            else:
                body = copy.deepcopy(document)

            state = ResourceState(
                id=spec.id,
                path=config.path,
                body=body,
                query=dict(config.query),
                header=dict(config.header),
            )
            output = self._project_output(config, document, state.private)
            logger.info("Resource imported", id=spec.id)
            return state.with_output(output, config.use_sensitive_output)
