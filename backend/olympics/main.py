from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, login_required, current_user
from olympics import db
from olympics.errors import BadRequest, Unauthorized
from olympics.models import User, Participant

main = Blueprint('main', __name__)

@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Scotty Olympics!'})

@main.route('/users/add', methods=['POST'])
def add_user():
    """Create a login together with its participant profile."""
    data = request.get_json(silent=True) or {}
    email = (data.get('email') or '').strip().lower()
    password = data.get('password')
    if not email or not password:
        raise BadRequest('Missing email or password')

    if User.query.filter_by(email=email).first() or Participant.query.filter_by(email=email).first():
        raise BadRequest('Email already registered')

    user = User(email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.flush()

    admin_email = (current_app.config.get('ADMIN_EMAIL') or '').lower()
    participant = Participant(
        user_id=user.id,
        email=email,
        name=data.get('name') or email.split('@')[0] or 'Athlete',
        is_admin=bool(admin_email) and email == admin_email,
    )
    db.session.add(participant)
    db.session.commit()
    current_app.logger.info(f"[user-add] user={user.id} participant={participant.id} admin={participant.is_admin}")

    return jsonify(user.to_dict()), 201

@main.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    user = User.query.filter_by(email=(data.get('email') or '').strip().lower()).first()
    if user and user.check_password(data.get('password') or ''):
        login_user(user, remember=True)
        return jsonify(user.to_dict())
    raise Unauthorized('Invalid email or password')

@main.route('/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({'message': 'Logged out successfully.'})

@main.route('/me')
@login_required
def me():
    return jsonify(current_user.to_dict())
