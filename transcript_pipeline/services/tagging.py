"""Sensitive-information tagging with Google Cloud DLP, and tag reorganization."""

import logging
from collections.abc import Iterable
from typing import Any, Protocol

from google.api_core import exceptions as api_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import dlp_v2

from transcript_pipeline.errors import ExternalPermanent, ExternalTransient
from transcript_pipeline.schemas.request import RequestRecord, Tag

logger = logging.getLogger(__name__)

INFO_TYPES = ["PHONE_NUMBER", "PERSON_NAME", "STREET_ADDRESS", "US_STATE"]


class Classifier(Protocol):
    def classify(self, text: str) -> dict[str, Tag]:
        """Return the tags found in `text`, keyed by quote."""


def findings_to_tag_map(findings: Iterable[Any]) -> dict[str, Tag]:
    """Quote-keyed tag map; a quote found more than once keeps its most likely finding."""
    tags: dict[str, Tag] = {}
    for finding in findings:
        byte_range = finding.location.byte_range
        tag = Tag(
            quote=finding.quote,
            info_type=finding.info_type.name,
            likelihood=int(finding.likelihood),
            begin_byte_offset=byte_range.start,
            end_byte_offset=byte_range.end,
        )
        incumbent = tags.get(tag.quote)
        if incumbent is None or tag.likelihood > incumbent.likelihood:
            tags[tag.quote] = tag
    return tags


def reorg_matched_tags(record: RequestRecord) -> RequestRecord:
    """Re-key matched_tags by info type, keeping the best tag of each type.

    Higher likelihood wins; on equal likelihood the longer quote wins, and
    on equal length the first seen is kept.
    """
    best: dict[str, Tag] = {}
    for tag in record.matched_tags.values():
        incumbent = best.get(tag.info_type)
        if incumbent is None:
            best[tag.info_type] = tag
        elif tag.likelihood > incumbent.likelihood:
            best[tag.info_type] = tag
        elif tag.likelihood == incumbent.likelihood and len(tag.quote) > len(incumbent.quote):
            best[tag.info_type] = tag

    record.matched_tags = best
    return record


class DLPClassifier:
    """Inspects text with Cloud DLP for the configured info types."""

    def __init__(self, project_id: str, client: dlp_v2.DlpServiceClient | None = None) -> None:
        self.project_id = project_id
        self._client = client

    def _get_client(self) -> dlp_v2.DlpServiceClient:
        if self._client is None:
            self._client = dlp_v2.DlpServiceClient()
        return self._client

    def build_request(self, text: str) -> dict[str, Any]:
        return {
            "parent": f"projects/{self.project_id}",
            "inspect_config": {
                "info_types": [{"name": name} for name in INFO_TYPES],
                "min_likelihood": dlp_v2.Likelihood.POSSIBLE,
                "include_quote": True,
            },
            "item": {"value": text},
        }

    def classify(self, text: str) -> dict[str, Tag]:
        if not text:
            return {}
        try:
            response = self._get_client().inspect_content(request=self.build_request(text))
        except api_exceptions.InvalidArgument as e:
            raise ExternalPermanent(f"DLP rejected inspection: {e}", cause=e) from e
        except (api_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise ExternalTransient(f"DLP inspection failed: {e}", cause=e) from e

        findings = list(response.result.findings)
        logger.info("DLP findings: %d", len(findings))
        return findings_to_tag_map(findings)
