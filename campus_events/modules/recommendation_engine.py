"""
Recommendation Engine Module - Campus Events

Suggests upcoming events to a user from their registration history.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from campus_events.modules.models import Event, User

DEFAULT_CATEGORY = 'Academic'


@dataclass
class Recommendation:
    event: Event
    score: float

    @property
    def confidence(self) -> int:
        return min(round(self.score * 20), 100)

    def to_dict(self) -> Dict[str, Any]:
        data = self.event.to_dict()
        data.pop('attendees', None)
        data.update({
            'availableSpots': self.event.available_spots,
            'score': round(self.score, 2),
            'confidence': self.confidence
        })
        return data


class RecommendationEngine:
    """
    Score-based event recommendations.

    Score of an upcoming event the user has not registered for:
    +3 if its category is the user's most frequent one, +2 x fill ratio,
    +2 within 7 days (+1 within 14), +1 if more than half the spots are free.
    """

    def __init__(self, limit: int = 3, clock: Callable[[], datetime] = datetime.now):
        self.limit = limit
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def preferred_category(self, events: List[Event], user: User) -> str:
        categories = Counter(e.category for e in events if e.find_attendee(user.id) is not None)
        if not categories:
            return DEFAULT_CATEGORY
        return categories.most_common(1)[0][0]

    def score(self, event: Event, preferred_category: str, now: datetime) -> float:
        score = 0.0

        if event.category == preferred_category:
            score += 3

        if event.max_attendees > 0:
            score += len(event.attendees) / event.max_attendees * 2

        days_until = (datetime.strptime(event.date, '%Y-%m-%d') - now).total_seconds() / 86400
        if days_until <= 7:
            score += 2
        elif days_until <= 14:
            score += 1

        if event.available_spots > event.max_attendees * 0.5:
            score += 1

        return score

    def recommend(self, events: List[Event], user: User, now: Optional[datetime] = None) -> List[Recommendation]:
        """
        Top recommendations for a user.

        Args:
            events (List[Event]): Active events
            user (User): User to recommend for
            now (datetime): Reference time

        Returns:
            List[Recommendation]: Highest scores first
        """
        now = now or self.clock()
        preferred = self.preferred_category(events, user)

        candidates = []
        for event in events:
            if event.find_attendee(user.id) is not None or event.is_full:
                continue
            try:
                if datetime.strptime(event.date, '%Y-%m-%d') <= now:
                    continue
            except ValueError:
                continue
            candidates.append(Recommendation(event, self.score(event, preferred, now)))

        candidates.sort(key=lambda r: r.score, reverse=True)
        recommendations = candidates[:self.limit]

        self.logger.info(
            f"{len(recommendations)} recommendations for {user.email} (preferred category {preferred})"
        )
        return recommendations
