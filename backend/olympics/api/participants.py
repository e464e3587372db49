from flask import Blueprint, jsonify
from olympics import db
from olympics.errors import NotFound
from olympics.models import Participant, Score, Event
from olympics.services.games.scoring import competition_ranks

participants = Blueprint('participants', __name__)


def _point_totals():
    totals = dict(
        db.session.query(Score.participant_id, db.func.coalesce(db.func.sum(Score.points), 0))
        .group_by(Score.participant_id)
        .all()
    )
    return {p_id: int(totals.get(p_id, 0)) for (p_id,) in db.session.query(Participant.id).all()}


@participants.route('', methods=['GET'])
def list_participants():
    return jsonify([p.to_dict(include_email=False) for p in Participant.query.order_by(Participant.id).all()])


@participants.route('/<int:participant_id>', methods=['GET'])
def get_participant_with_scores(participant_id):
    participant = db.session.get(Participant, participant_id)
    if not participant:
        raise NotFound('Participant not found')
    rows = (
        Score.query.filter_by(participant_id=participant.id)
        .join(Event)
        .order_by(Score.created_at.desc(), Score.id.desc())
        .all()
    )
    return jsonify({
        'participant': participant.to_dict(),
        'scores': [{**s.to_dict(), 'event': s.event.to_dict()} for s in rows],
        'total_points': sum(s.points for s in rows),
    })


@participants.route('/<int:participant_id>/rank', methods=['GET'])
def get_participant_rank(participant_id):
    """Overall standing by total points.

    Tied totals share a rank (competition ranking, 1, 1, 3) rather than each
    taking its position in the sorted list, so equal totals never get
    different standings depending on participant id.
    """
    totals = _point_totals()
    if participant_id not in totals:
        raise NotFound('Participant not found in rankings')
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    ranks = competition_ranks([points for _, points in ordered])
    rank = next(r for (p_id, _), r in zip(ordered, ranks) if p_id == participant_id)
    return jsonify({
        'rank': rank,
        'total_points': totals[participant_id],
        'total_participants': len(totals),
    })
