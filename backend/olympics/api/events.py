from flask import Blueprint, jsonify, request, current_app
from olympics import db
from olympics.auth import admin_required
from olympics.errors import BadRequest, NotFound
from olympics.models import Event, Participant, Score

events = Blueprint('events', __name__)
scores = Blueprint('scores', __name__)

# Rank-based entry: 1st place earns 14 points, 14th earns 1
MAX_RANK = 14


def _optional_int(data, key):
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(f'{key} must be an integer')
    return value


def _event_payload():
    data = request.get_json(silent=True) or {}
    name = (data.get('name') or '').strip()
    if not name:
        raise BadRequest('Event name is required')
    return name, data.get('description'), _optional_int(data, 'display_order')


@events.route('', methods=['GET'])
def list_events():
    ordered = Event.query.order_by(Event.display_order.is_(None), Event.display_order, Event.id).all()
    return jsonify([e.to_dict() for e in ordered])


@events.route('/<int:event_id>', methods=['GET'])
def get_event_with_scores(event_id):
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFound('Event not found')
    rows = Score.query.filter_by(event_id=event.id).order_by(Score.rank, Score.points.desc()).all()
    return jsonify({
        'event': event.to_dict(),
        'scores': [
            {**s.to_dict(), 'participant': s.participant.to_dict(include_email=False)}
            for s in rows
        ],
    })


@events.route('', methods=['POST'])
@admin_required
def create_event():
    name, description, display_order = _event_payload()
    if Event.query.filter_by(name=name).first():
        raise BadRequest(f'An event with the name "{name}" already exists')
    event = Event(name=name, description=description, display_order=display_order)
    db.session.add(event)
    db.session.commit()
    current_app.logger.info(f"[event-create] event={event.id} name={name!r}")
    return jsonify(event.to_dict()), 201


@events.route('/<int:event_id>', methods=['PUT'])
@admin_required
def update_event(event_id):
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFound('Event not found')
    name, description, display_order = _event_payload()
    if Event.query.filter(Event.name == name, Event.id != event.id).first():
        raise BadRequest(f'Another event with the name "{name}" already exists')
    event.name = name
    event.description = description
    event.display_order = display_order
    db.session.commit()
    return jsonify(event.to_dict())


@events.route('/<int:event_id>', methods=['DELETE'])
@admin_required
def delete_event(event_id):
    event = db.session.get(Event, event_id)
    if not event:
        raise NotFound('Event not found')
    if Score.query.filter_by(event_id=event.id).count() > 0:
        raise BadRequest('Cannot delete event with associated scores. Please delete the scores first.')
    db.session.delete(event)
    db.session.commit()
    current_app.logger.info(f"[event-delete] event={event_id}")
    return jsonify({'success': True, 'message': 'Event deleted successfully'})


@scores.route('/leaderboard', methods=['GET'])
def leaderboard():
    totals = dict(
        db.session.query(Score.participant_id, db.func.coalesce(db.func.sum(Score.points), 0))
        .group_by(Score.participant_id)
        .all()
    )
    rows = [
        {**p.to_dict(include_email=False), 'total_points': int(totals.get(p.id, 0))}
        for p in Participant.query.order_by(Participant.id).all()
    ]
    rows.sort(key=lambda r: -r['total_points'])
    return jsonify(rows)


@scores.route('', methods=['POST'])
@admin_required
def update_score():
    """Admin score entry. Replaces the participant's score for the event.

    ``score_type`` is ``rank`` (points = 15 - rank) or ``points`` (direct
    points, stored with rank 0).
    """
    data = request.get_json(silent=True) or {}
    event_id = _optional_int(data, 'event_id')
    participant_id = _optional_int(data, 'participant_id')
    if event_id is None or participant_id is None:
        raise BadRequest('event_id and participant_id are required')
    if not db.session.get(Event, event_id):
        raise NotFound('Event not found')
    if not db.session.get(Participant, participant_id):
        raise NotFound('Participant not found')

    score_type = data.get('score_type')
    if score_type == 'rank':
        rank = _optional_int(data, 'rank')
        if rank is None:
            raise BadRequest('Rank is required when using rank-based scoring')
        if not 1 <= rank <= MAX_RANK:
            raise BadRequest(f'Rank must be between 1 and {MAX_RANK}')
        points = MAX_RANK + 1 - rank
    elif score_type == 'points':
        points = _optional_int(data, 'points')
        if points is None:
            raise BadRequest('Points value is required when using direct points entry')
        if points < 0:
            raise BadRequest('Points must be non-negative')
        rank = 0
    else:
        raise BadRequest('score_type must be "rank" or "points"')

    score = Score.query.filter_by(participant_id=participant_id, event_id=event_id).first()
    if score is None:
        score = Score(participant_id=participant_id, event_id=event_id)
        db.session.add(score)
    score.rank = rank
    score.points = points
    db.session.commit()
    current_app.logger.info(
        f"[score-update] participant={participant_id} event={event_id} rank={rank} points={points}"
    )
    return jsonify({'success': True, 'message': 'Score updated successfully', 'data': score.to_dict()})
