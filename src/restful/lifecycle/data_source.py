"""Read-only data source lookups."""

import structlog

from ..api.client import NO_CONTENT, RestClient
from ..api.response import RequestOptions, expand_header, expand_query
from ..core import jsonquery, shaper
from ..execution.precheck import precheck
from ..models.resource import DataSourceConfig
from ..models.state import DataSourceResult
from ..utils.cancellation import CancelScope
from ..utils.exceptions import GoneError
from .phase import PhaseState, PhaseTracker

logger = structlog.get_logger(__name__)


class DataSourceReader:
    """Read data sources through a shared client."""

    def __init__(self, client: RestClient) -> None:
        self.client = client

    async def read(self, config: DataSourceConfig, cancel: CancelScope | None = None) -> DataSourceResult:
        """
        Look up a remote object.

        With ``allow_not_exist`` a 404 or an empty selector match yields a
        result with ``exists=False`` instead of an error.

        Raises:
            GoneError: If the object does not exist and allow_not_exist is off.
            HTTPStatusError: For any other failed read.
        """
        cancel = cancel or CancelScope()

        with PhaseTracker("data-source", config.id) as tracker:
            query = dict(config.query)
            header = dict(config.header)
            if config.body is not None:
                query = expand_query(query, config.body)
                header = expand_header(header, config.body)
            options = RequestOptions(
                method=config.method,
                query=query,
                header=header,
                retry=config.retry.to_policy() if config.retry else None,
            )

            tracker.advance(PhaseState.PRECHECKING)
            async with precheck(
                self.client, config.precheck, default_path=config.id, query=query, header=header, cancel=cancel
            ):
                tracker.advance(PhaseState.ISSUING)
                body = NO_CONTENT if config.body is None else config.body
                response = await self.client.read_data_source(config.id, options, cancel, body=body)

            if response.is_not_found:
                return self._missing(config, "not found")
            response.raise_for_status("data source read")

            document = response.json_or_none()
            if config.selector:
                found = jsonquery.get(document, config.selector)
                if not found.exists:
                    return self._missing(config, "selector matched nothing")
                document = found.value

            output = shaper.filter_attrs(document, config.output_attrs)
            logger.debug("Data source read", id=config.id, status=response.status_code)
            return DataSourceResult(id=config.id, output=output)

    def _missing(self, config: DataSourceConfig, reason: str) -> DataSourceResult:
        if not config.allow_not_exist:
            raise GoneError(config.id, reason)
        logger.info("Data source does not exist", id=config.id, reason=reason)
        return DataSourceResult(id=config.id, exists=False)
