"""HNSW tuning presets chosen by expected collection size."""

from pydantic import BaseModel, ConfigDict, Field

from lorevault_core.models.enums import IndexProfile

SMALL_COLLECTION_LIMIT = 1_000
MEDIUM_COLLECTION_LIMIT = 50_000


class AnnTuning(BaseModel):
    """Connectivity (``m``), build depth and query depth of an HNSW index.

    ``max_scan_tuples`` bounds how far an iterative scan walks past rows the
    filters reject before it gives up and returns fewer than k.
    """

    model_config = ConfigDict(frozen=True)

    m: int = Field(ge=2, le=100)
    ef_construction: int = Field(ge=4, le=1000)
    ef_search: int = Field(ge=1, le=1000)
    max_scan_tuples: int = Field(default=20_000, ge=1)


PROFILES: dict[IndexProfile, AnnTuning] = {
    IndexProfile.SMALL: AnnTuning(m=16, ef_construction=64, ef_search=40, max_scan_tuples=20_000),
    IndexProfile.MEDIUM: AnnTuning(
        m=16, ef_construction=128, ef_search=100, max_scan_tuples=50_000
    ),
    IndexProfile.LARGE: AnnTuning(
        m=32, ef_construction=256, ef_search=200, max_scan_tuples=200_000
    ),
}


def profile_for_size(expected_rows: int) -> IndexProfile:
    if expected_rows < SMALL_COLLECTION_LIMIT:
        return IndexProfile.SMALL
    if expected_rows < MEDIUM_COLLECTION_LIMIT:
        return IndexProfile.MEDIUM
    return IndexProfile.LARGE


def select_tuning(expected_rows: int, profile: IndexProfile | None = None) -> AnnTuning:
    """Tuning for an explicit ``profile``, else the one matching ``expected_rows``."""
    return PROFILES[profile or profile_for_size(expected_rows)]


def effective_ef_search(tuning: AnnTuning, k: int, override: int | None = None) -> int:
    """Query depth for one search. Never below ``k``, or HNSW returns fewer rows."""
    return max(override if override is not None else tuning.ef_search, k)
