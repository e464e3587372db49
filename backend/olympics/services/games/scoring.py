from typing import List, Optional, Sequence

from sqlalchemy import select

from olympics.models import Event, GameParticipant, Score, utcnow


def competition_ranks(values: Sequence[int]) -> List[int]:
    """Rank an already descending sequence with standard competition ranking.

    Equal values share the rank of the first of them; the next distinct value
    takes its 1-based position, so [10, 10, 7] ranks as [1, 1, 3].
    """
    ranks: List[int] = []
    for index, value in enumerate(values):
        if index > 0 and value == values[index - 1]:
            ranks.append(ranks[index - 1])
        else:
            ranks.append(index + 1)
    return ranks


def rank_game_participants(participants: Sequence[GameParticipant]) -> List[tuple]:
    """Return ``(game_participant, rank)`` pairs ordered by tap count, best first.

    Ties keep join order (the sort is stable over ids).
    """
    ordered = sorted(participants, key=lambda gp: (-(gp.tap_count or 0), gp.id))
    ranks = competition_ranks([gp.tap_count or 0 for gp in ordered])
    return list(zip(ordered, ranks))


def bonus_points(rank: int, participant_count: int, bonus: int = 1) -> int:
    """Winner bonus for one finished game.

    Every rank-1 participant gets the bonus, co-leaders included, but only when
    more than one participant took part.
    """
    if participant_count > 1 and rank == 1:
        return bonus
    return 0


def _dialect_insert(session):
    dialect = session.get_bind().dialect.name
    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
        return insert
    return None


def ensure_event(session, name: str, description: Optional[str] = None) -> Event:
    """Find or create the event called ``name``.

    Creation is an INSERT .. ON CONFLICT DO NOTHING keyed by the unique name,
    so concurrent first-time callers converge on one row.
    """
    event = session.execute(select(Event).filter_by(name=name)).scalar_one_or_none()
    if event is not None:
        return event
    insert = _dialect_insert(session)
    if insert is None:
        event = Event(name=name, description=description)
        session.add(event)
        session.flush()
        return event
    session.execute(
        insert(Event.__table__)
        .values(name=name, description=description, created_at=utcnow())
        .on_conflict_do_nothing(index_elements=['name'])
    )
    return session.execute(select(Event).filter_by(name=name)).scalar_one()


def record_score(session, participant_id: int, event_id: int, rank: int, points: int) -> Score:
    """Accumulate a result into the participant's Score row for the event.

    Points are added to the running total; the stored rank is the best
    (lowest) one seen. A rank below 1 marks a direct-points entry and never
    counts as a best rank.
    """
    score = session.execute(
        select(Score).filter_by(participant_id=participant_id, event_id=event_id)
    ).scalar_one_or_none()
    if score is None:
        score = Score(participant_id=participant_id, event_id=event_id, rank=rank, points=points)
        session.add(score)
        return score
    score.points = (score.points or 0) + points
    if score.rank is None or score.rank < 1:
        score.rank = rank
    else:
        score.rank = min(score.rank, rank)
    session.add(score)
    return score
