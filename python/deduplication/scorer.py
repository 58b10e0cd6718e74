"""
Match scoring for retrieved candidates

Each candidate is checked independently against the criteria:
- national ID equal (after upper-casing)  -> national_id_weight, NATIONAL_ID
- phone equal (under the phone policy)     -> phone_weight, PHONE
- name similarity above name_threshold     -> floor(similarity * name_weight), NAME

The score is the sum of the contributions. A candidate with no match
type is discarded.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from config_manager import MatchingConfig, NormalizationConfig, validate_matching_config
from deduplication.normalizer import normalize_phone
from deduplication.similarity import name_similarity
from deduplication.types import CandidateRecord, MatchType, ScoredCandidate, SearchCriteria

logger = logging.getLogger(__name__)


class MatchScorer:
    """Scores candidates with explicit weights and threshold"""

    def __init__(
        self,
        matching: Optional[MatchingConfig] = None,
        normalization: Optional[NormalizationConfig] = None
    ):
        self.matching = matching or MatchingConfig()
        self.normalization = normalization or NormalizationConfig()
        validate_matching_config(self.matching)

    def score(self, record: CandidateRecord, criteria: SearchCriteria) -> Optional[ScoredCandidate]:
        """Score one candidate

        Returns:
            ScoredCandidate, or None when nothing matched
        """
        match_types = set()
        total = 0
        similarity = 0.0

        if criteria.national_id and record.national_id:
            if record.national_id.strip().upper() == criteria.national_id:
                match_types.add(MatchType.NATIONAL_ID)
                total += self.matching.national_id_weight

        if criteria.phone and record.applicant_phone:
            candidate_phone = normalize_phone(record.applicant_phone, self.normalization, enforce_minimum=False)
            if candidate_phone == criteria.phone:
                match_types.add(MatchType.PHONE)
                total += self.matching.phone_weight

        if criteria.name:
            similarity = name_similarity(criteria.name, record.applicant_name)
            if similarity > self.matching.name_threshold:
                match_types.add(MatchType.NAME)
                total += math.floor(similarity * self.matching.name_weight)

        if not match_types:
            return None

        return ScoredCandidate(
            record=record,
            match_types=frozenset(match_types),
            score=total,
            name_similarity=similarity
        )

    def score_all(
        self,
        records: Iterable[CandidateRecord],
        criteria: SearchCriteria,
        max_workers: Optional[int] = None
    ) -> List[ScoredCandidate]:
        """Score candidates and drop those without a match

        Args:
            records: Retrieved candidates
            criteria: Normalized criteria
            max_workers: Thread count; 1 or None scores sequentially

        Returns:
            Scored candidates in no particular order
        """
        records = list(records)

        if max_workers and max_workers > 1 and len(records) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as executor:
                results = list(executor.map(lambda r: self.score(r, criteria), records))
        else:
            results = [self.score(r, criteria) for r in records]

        scored = [r for r in results if r is not None]
        logger.debug("Scored %d of %d candidates", len(scored), len(records))
        return scored
