"""
Flask web application for the soccer league site.
"""
import os
import re
import logging
from functools import wraps
from flask import Flask, render_template, request, jsonify, redirect, url_for, flash, session, g, abort
from werkzeug.security import check_password_hash, generate_password_hash
from league import player_stats, presentation
from league.admin import LIMIT_REACHED, MESSAGES
from league.cache import CacheConfig, QueryCache
from league.config import Config
from league.errors import NotFound, PermissionDenied, StoreError, Unavailable, ValidationError
from league.hooks import RESOURCE_READERS, ResourceHooks, USERS
from league.insights import InsightGenerator
from league.models import ROUND_ORDER, User
from league.store import create_store
from league import services

config = Config.from_env()
DATA_DIR = config.data_dir

logging.basicConfig(level=config.log_level,
                    format='%(asctime)s %(levelname)s %(name)s: %(message)s')

app = Flask(__name__)


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    if config.secret_key:
        return config.secret_key.encode()
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


app.secret_key = _get_or_create_secret_key()

store = create_store(config)
cache = QueryCache(CacheConfig(stale_after_ms=config.cache_stale_after_ms,
                               retry_on_error=config.cache_retry_on_error))
generator = InsightGenerator(store, api_key=config.openai_api_key,
                             base_url=config.openai_base_url, model=config.openai_model)
hooks = ResourceHooks(store, cache, generator)

EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
MIN_PASSWORD_LENGTH = 6
GENERIC_ERROR = 'Failed to load league information. Please try again later.'


def create_user(email: str, password: str, display_name: str = '') -> tuple:
    """Create a new user. Returns (success, message)."""
    email = email.lower().strip()
    if not EMAIL_RE.match(email):
        return False, 'Please enter a valid email address.'
    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f'Password must be at least {MIN_PASSWORD_LENGTH} characters.'
    settings = services.get_settings(store)
    if not settings.signup_enabled:
        return False, 'Sign up is currently disabled.'
    if services.find_user_by_email(store, email) is not None:
        return False, 'An account with this email already exists.'
    user = User(email=email, role='user', active=True,
                display_name=display_name.strip() or None,
                password_hash=generate_password_hash(password))
    user.id = services.create_user(store, user)
    cache.invalidate(USERS)
    app.logger.info(f'Created user {email} ({user.id})')
    return True, 'Account created successfully.'


def authenticate_user(email: str, password: str):
    """Return the user for valid, active credentials, else None."""
    user = services.find_user_by_email(store, email)
    if user is None or not user.password_hash:
        return None
    if not check_password_hash(user.password_hash, password):
        return None
    if not user.active:
        return None
    return user


def login_required(f):
    """Redirect to login page if user not authenticated."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            return redirect(url_for('login_page', next=request.path))
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Only league administrators may continue."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = g.get('user')
        if user is None:
            return redirect(url_for('login_page', next=request.path))
        if not user.is_admin:
            if request.path.startswith('/api/'):
                return jsonify({'error': 'Administrator access required'}), 403
            flash('Administrator access required.', 'error')
            return redirect(url_for('index'))
        return f(*args, **kwargs)
    return decorated_function


@app.before_request
def load_current_user():
    """Set g.user from the session."""
    g.user = None
    if request.endpoint == 'static':
        return
    user_id = session.get('user_id')
    if not user_id:
        return
    result = hooks.use_user(user_id)
    if result.is_success and result.data.active:
        g.user = result.data
    elif result.is_success or isinstance(result.error, NotFound):
        # Deleted or deactivated accounts lose their session
        session.clear()
    else:
        app.logger.warning(f'Could not load user {user_id}: {result.reason}')


@app.context_processor
def inject_auth_context():
    """Make league and auth info available to all templates."""
    league_name = 'Soccer League'
    current_season = ''
    settings = hooks.use_settings()
    if settings.data is not None:
        league_name = settings.data.league_name
        current_season = settings.data.current_season
    user = g.get('user')
    return {
        'current_user': user,
        'is_authenticated': user is not None,
        'is_admin': bool(user and user.is_admin),
        'loading': False,
        'league_name': league_name,
        'current_season': current_season,
    }


app.jinja_env.filters['match_date'] = presentation.format_match_date
# Globals rather than context so imported macros can use them
app.jinja_env.globals.update(score_line=presentation.score_line, generic_error=GENERIC_ERROR)


@app.errorhandler(NotFound)
def handle_not_found(e):
    if request.path.startswith('/api/'):
        return jsonify({'error': str(e)}), 404
    return render_template('error.html', message='The page you requested could not be found.'), 404


@app.errorhandler(Unavailable)
def handle_unavailable(e):
    app.logger.error(f'Store unavailable: {e}')
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Service unavailable'}), 503
    return render_template('error.html', message=GENERIC_ERROR), 503


@app.errorhandler(PermissionDenied)
def handle_permission_denied(e):
    app.logger.error(f'Store permission denied: {e}')
    if request.path.startswith('/api/'):
        return jsonify({'error': 'Permission denied'}), 403
    return render_template('error.html', message=GENERIC_ERROR), 403


def _flash_result(result, success_message: str) -> bool:
    """Flash the outcome of a mutation. Returns True on success."""
    if result.is_success:
        flash(success_message, 'success')
        return True
    flash(result.reason if isinstance(result.error, ValidationError) else GENERIC_ERROR, 'error')
    return False


def _int_or_none(value):
    if value is None or str(value).strip() == '':
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f'{value!r} is not a whole number')


def _team_names() -> dict:
    teams = hooks.use_teams()
    return {t.id: t.name for t in teams.data or []}


def _match_form(form, playoff: bool = False) -> dict:
    """Turn a submitted match form into a document-shaped dict."""
    names = _team_names()
    team1_id = form.get('team1_id', '').strip()
    team2_id = form.get('team2_id', '').strip()
    completed = form.get('completed') in ('on', 'true', '1')
    data = {
        'team1Id': team1_id,
        'team2Id': team2_id,
        'team1Name': names.get(team1_id, services.TBD_TEAM if playoff else ''),
        'team2Name': names.get(team2_id, services.TBD_TEAM if playoff else ''),
        'date': form.get('date', '').strip(),
        'location': form.get('location', '').strip(),
        'completed': completed,
        'score1': _int_or_none(form.get('score1')) if completed else None,
        'score2': _int_or_none(form.get('score2')) if completed else None,
    }
    if not playoff:
        if not team1_id or not team2_id:
            raise ValidationError('Please choose both teams.')
        if team1_id not in names or team2_id not in names:
            raise ValidationError('Unknown team selected.')
    if not data['date']:
        raise ValidationError('Please choose a date.')
    if playoff:
        data['round'] = form.get('round', '')
        data['matchNumber'] = _int_or_none(form.get('match_number'))
    return data


# Authentication

@app.route('/login', methods=['GET', 'POST'])
def login_page():
    """Login form and authentication."""
    if g.user is not None:
        return redirect(url_for('teams'))
    if request.method == 'POST':
        email = request.form.get('email', '')
        password = request.form.get('password', '')
        user = authenticate_user(email, password)
        if user is not None:
            session['user_id'] = user.id
            session.permanent = True
            next_url = request.args.get('next', '')
            if next_url.startswith('/') and not next_url.startswith('//'):
                return redirect(next_url)
            return redirect(url_for('teams'))
        flash('Invalid email or password.', 'error')
    return render_template('login.html')


@app.route('/register', methods=['GET', 'POST'])
def register_page():
    """Registration form and user creation."""
    if g.user is not None:
        return redirect(url_for('teams'))
    settings = hooks.use_settings()
    signup_enabled = settings.data.signup_enabled if settings.data is not None else False
    if request.method == 'POST':
        email = request.form.get('email', '')
        password = request.form.get('password', '')
        confirm = request.form.get('confirm_password', '')
        if password != confirm:
            flash('Passwords do not match.', 'error')
        else:
            ok, msg = create_user(email, password, request.form.get('display_name', ''))
            if ok:
                user = services.find_user_by_email(store, email)
                session['user_id'] = user.id
                session.permanent = True
                flash(msg, 'success')
                return redirect(url_for('teams'))
            flash(msg, 'error')
    return render_template('register.html', signup_enabled=signup_enabled)


@app.route('/logout')
def logout():
    """Clear session and redirect to home."""
    session.clear()
    flash('Logged out.', 'success')
    return redirect(url_for('index'))


@app.route('/setup-admin', methods=['GET', 'POST'])
@login_required
def setup_admin():
    """Let a signed-in user promote themselves with the admin secret code."""
    promotion = None
    if request.method == 'POST' and not g.user.is_admin:
        secret_code = request.form.get('secret_code', '')
        if not secret_code:
            flash('Please enter the administrator secret code.', 'error')
        else:
            result = hooks.promote_to_admin().run(g.user.id, secret_code)
            if result.is_success:
                promotion = result.data
                flash(promotion.message, 'success')
                return redirect(url_for('admin_dashboard'))
            flash(result.reason, 'error')

    limit_reached = False
    try:
        limit_reached = services.is_admin_limit_reached(store)
    except StoreError as e:
        app.logger.warning(f'Error checking admin limit: {e}')
    return render_template('setup_admin.html', limit_reached=limit_reached,
                           limit_message=MESSAGES[LIMIT_REACHED])


# Public pages

@app.route('/')
def index():
    """Home page: upcoming fixtures, table leaders and latest summaries."""
    upcoming = hooks.use_future_matches().map(lambda matches: matches[:5])
    table = hooks.use_standings().map(lambda rows: rows[:5])
    insights = hooks.use_latest_insights(3)
    return render_template('index.html', upcoming=upcoming, table=table, insights=insights)


@app.route('/teams')
def teams():
    """All teams, alphabetically."""
    result = hooks.use_teams().map(presentation.sort_teams)
    return render_template('teams.html', teams=result)


@app.route('/teams/<team_id>')
def team_detail(team_id):
    """Team page: roster, standing and AI insights."""
    team = hooks.use_team(team_id)
    if team.is_error and isinstance(team.error, NotFound):
        abort(404)
    players = hooks.use_team_players(team_id)
    standing = hooks.use_team_standing(team_id)
    insights = hooks.use_insights('team', team_id)
    return render_template('team_detail.html', team=team, players=players,
                           standing=standing, insights=insights)


@app.route('/schedule')
def schedule():
    """Upcoming and past matches."""
    today = services.today_iso()
    upcoming = hooks.use_future_matches(today)
    past = hooks.use_past_matches(today)
    return render_template('schedule.html', upcoming=upcoming, past=past)


@app.route('/schedule/<match_id>')
def match_detail(match_id):
    """Match page with score and summaries."""
    match = hooks.use_match(match_id)
    if match.is_error and isinstance(match.error, NotFound):
        abort(404)
    insights = hooks.use_insights('match', match_id)
    show_generate = presentation.can_generate_summary(
        bool(g.user and g.user.is_admin), match.data if match.is_success else None)
    return render_template('match_detail.html', match=match, insights=insights,
                           show_generate=show_generate)


@app.route('/schedule/<match_id>/summary', methods=['POST'])
@admin_required
def generate_match_summary(match_id):
    """Generate an AI summary for a completed match."""
    result = hooks.generate_match_insight().run(match_id)
    _flash_result(result, 'Match summary generated.')
    return redirect(url_for('match_detail', match_id=match_id))


@app.route('/standings')
def standings():
    """League table and playoff bracket."""
    table = hooks.use_standings()
    playoffs = hooks.use_playoff_matches().map(presentation.group_playoffs)
    return render_template('standings.html', table=table, playoffs=playoffs)


@app.route('/stats')
def stats():
    """Top scorers."""
    scorers = hooks.use_top_scorers(10)
    return render_template('stats.html', scorers=scorers)


@app.route('/rules')
def rules():
    settings = hooks.use_settings()
    return render_template('rules.html', settings=settings.data)


# Admin pages

@app.route('/admin')
@admin_required
def admin_dashboard():
    """Admin landing page with collection counts."""
    counts = {
        'teams': hooks.use_teams(),
        'matches': hooks.use_matches(),
        'users': hooks.use_users(),
        'insights': hooks.use_all_insights(),
    }
    return render_template('admin/dashboard.html', counts=counts)


@app.route('/admin/teams', methods=['GET', 'POST'])
@admin_required
def admin_teams():
    """Create, edit and delete teams and their players."""
    if request.method == 'POST':
        action = request.form.get('action')
        team_id = request.form.get('team_id', '')
        team_data = {
            'name': request.form.get('name', ''),
            'logo': request.form.get('logo', '').strip() or None,
            'description': request.form.get('description', '').strip() or None,
        }
        if action == 'create':
            _flash_result(hooks.create_team().run(team_data), f'Team "{team_data["name"].strip()}" created.')
        elif action == 'update':
            _flash_result(hooks.update_team().run(team_id, team_data), 'Team updated.')
        elif action == 'delete':
            _flash_result(hooks.delete_team().run(team_id), 'Team deleted.')
        elif action == 'add_player':
            try:
                player_data = _player_form(request.form, team_id)
            except ValidationError as e:
                flash(str(e), 'error')
            else:
                _flash_result(hooks.add_player().run(player_data), 'Player added.')
        elif action == 'update_player':
            try:
                player_data = _player_form(request.form, team_id)
            except ValidationError as e:
                flash(str(e), 'error')
            else:
                _flash_result(hooks.update_player().run(request.form.get('player_id', ''), player_data),
                              'Player updated.')
        elif action == 'delete_player':
            _flash_result(hooks.delete_player().run(request.form.get('player_id', '')), 'Player removed.')
        elif action == 'generate_insight':
            _flash_result(hooks.generate_team_insight().run(team_id), 'Team insight generated.')
        else:
            flash('Unknown action.', 'error')
        return redirect(url_for('admin_teams'))

    result = hooks.use_teams().map(presentation.sort_teams)
    rosters = {t.id: hooks.use_team_players(t.id) for t in result.data or []}
    return render_template('admin/teams.html', teams=result, rosters=rosters)


def _player_form(form, team_id: str) -> dict:
    stats = {
        'goals': _int_or_none(form.get('goals')),
        'assists': _int_or_none(form.get('assists')),
        'yellowCards': _int_or_none(form.get('yellow_cards')),
        'redCards': _int_or_none(form.get('red_cards')),
        'gamesPlayed': _int_or_none(form.get('games_played')),
        'goalsAllowed': _int_or_none(form.get('goals_allowed')),
    }
    return {
        'name': form.get('player_name', '').strip(),
        'position': form.get('position', '').strip(),
        'number': form.get('number', '').strip() or None,
        'teamId': team_id,
        'stats': {k: v for k, v in stats.items() if v is not None},
    }


@app.route('/admin/league-goals', methods=['GET', 'POST'])
@admin_required
def admin_league_goals():
    """Paste goals or goalkeeper stats for every player in the league at once."""
    if request.method == 'POST':
        action = request.form.get('action')
        lines = request.form.get('lines', '')
        if action == 'goals':
            result = hooks.batch_update_goals().run(lines)
        elif action == 'goalkeepers':
            result = hooks.batch_update_goalkeeper_stats().run(lines)
        else:
            flash('Unknown action.', 'error')
            return redirect(url_for('admin_league_goals'))
        if _flash_result(result, f'Updated {result.data} players.'):
            return redirect(url_for('admin_league_goals'))
        # Keep the pasted lines so they can be corrected
        if action == 'goals':
            return _render_league_goals(goals_text=lines)
        return _render_league_goals(goalkeeper_text=lines)

    return _render_league_goals()


def _render_league_goals(goals_text: str = None, goalkeeper_text: str = None):
    players = hooks.use_players().map(lambda items: sorted(items, key=lambda p: p.name.casefold()))
    if players.is_success:
        keepers = [p for p in players.data if 'keeper' in p.position.casefold()] or players.data
        if goals_text is None:
            goals_text = player_stats.goal_lines(players.data)
        if goalkeeper_text is None:
            goalkeeper_text = player_stats.goalkeeper_lines(keepers)
    return render_template('admin/league_goals.html', players=players,
                           goals_text=goals_text or '', goalkeeper_text=goalkeeper_text or '')


@app.route('/admin/matches', methods=['GET', 'POST'])
@admin_required
def admin_matches():
    """Schedule matches and record results."""
    if request.method == 'POST':
        action = request.form.get('action')
        match_id = request.form.get('match_id', '')
        try:
            if action == 'create':
                _flash_result(hooks.create_match().run(_match_form(request.form)), 'Match scheduled.')
            elif action == 'update':
                _flash_result(hooks.update_match().run(match_id, _match_form(request.form)), 'Match updated.')
            elif action == 'delete':
                _flash_result(hooks.delete_match().run(match_id), 'Match deleted.')
            else:
                flash('Unknown action.', 'error')
        except ValidationError as e:
            flash(str(e), 'error')
        return redirect(url_for('admin_matches'))

    teams_result = hooks.use_teams().map(presentation.sort_teams)
    matches = hooks.use_matches()
    return render_template('admin/matches.html', teams=teams_result, matches=matches)


@app.route('/admin/playoffs', methods=['GET', 'POST'])
@admin_required
def admin_playoffs():
    """Manage the playoff bracket."""
    if request.method == 'POST':
        action = request.form.get('action')
        match_id = request.form.get('match_id', '')
        try:
            if action == 'create':
                _flash_result(hooks.create_playoff_match().run(_match_form(request.form, playoff=True)),
                              'Playoff match created.')
            elif action == 'update':
                _flash_result(hooks.update_playoff_match().run(match_id, _match_form(request.form, playoff=True)),
                              'Playoff match updated.')
            elif action == 'delete':
                _flash_result(hooks.delete_playoff_match().run(match_id), 'Playoff match deleted.')
            else:
                flash('Unknown action.', 'error')
        except ValidationError as e:
            flash(str(e), 'error')
        return redirect(url_for('admin_playoffs'))

    teams_result = hooks.use_teams().map(presentation.sort_teams)
    playoffs = hooks.use_playoff_matches()
    return render_template('admin/playoffs.html', teams=teams_result, playoffs=playoffs,
                           rounds=list(ROUND_ORDER))


@app.route('/admin/standings', methods=['GET', 'POST'])
@admin_required
def admin_standings():
    """Recalculate the table and pin manual ranks."""
    if request.method == 'POST':
        action = request.form.get('action')
        if action == 'recalculate':
            _flash_result(hooks.recalculate_standings().run(), 'Standings recalculated.')
        elif action == 'manual_rank':
            try:
                manual_rank = _int_or_none(request.form.get('manual_rank'))
            except ValidationError as e:
                flash(str(e), 'error')
            else:
                manually_ranked = manual_rank is not None
                _flash_result(hooks.update_manual_ranking().run(request.form.get('team_id', ''),
                                                                manually_ranked, manual_rank),
                              'Ranking updated.')
        else:
            flash('Unknown action.', 'error')
        return redirect(url_for('admin_standings'))

    return render_template('admin/standings.html', table=hooks.use_standings())


@app.route('/admin/settings', methods=['GET', 'POST'])
@admin_required
def admin_settings():
    """League-wide configuration."""
    current = hooks.use_settings()
    if request.method == 'POST':
        if current.data is None:
            flash(GENERIC_ERROR, 'error')
            return redirect(url_for('admin_settings'))
        try:
            submitted = {
                'leagueName': request.form.get('league_name', '').strip(),
                'currentSeason': request.form.get('current_season', '').strip(),
                'pointsForWin': _int_or_none(request.form.get('points_for_win')),
                'pointsForDraw': _int_or_none(request.form.get('points_for_draw')),
                'pointsForLoss': _int_or_none(request.form.get('points_for_loss')),
                'maxAdminUsers': _int_or_none(request.form.get('max_admin_users')),
                'adminSecretCode': request.form.get('admin_secret_code', ''),
            }
        except ValidationError as e:
            flash(str(e), 'error')
        else:
            # Blank fields keep their saved values; checkboxes are always submitted
            data = current.data.to_document()
            data.update({k: v for k, v in submitted.items() if v is not None and v != ''})
            data['enableAIInsights'] = request.form.get('enable_ai_insights') == 'on'
            data['signupEnabled'] = request.form.get('signup_enabled') == 'on'
            _flash_result(hooks.update_settings().run(data), 'Settings saved.')
        return redirect(url_for('admin_settings'))

    return render_template('admin/settings.html', settings=current)


@app.route('/admin/users', methods=['GET', 'POST'])
@admin_required
def admin_users():
    """Change roles and activate or deactivate accounts."""
    if request.method == 'POST':
        action = request.form.get('action')
        user_id = request.form.get('user_id', '')
        if user_id == g.user.id:
            flash('You cannot change your own account here.', 'error')
        elif action == 'role':
            _flash_result(hooks.update_user_role().run(user_id, request.form.get('role', '')), 'Role updated.')
        elif action == 'active':
            active = request.form.get('active') == 'true'
            _flash_result(hooks.update_user_active().run(user_id, active), 'Account updated.')
        else:
            flash('Unknown action.', 'error')
        return redirect(url_for('admin_users'))

    return render_template('admin/users.html', users=hooks.use_users())


@app.route('/admin/insights', methods=['GET', 'POST'])
@admin_required
def admin_insights():
    """Browse, generate and delete AI insights."""
    if request.method == 'POST':
        action = request.form.get('action')
        if action == 'delete':
            _flash_result(hooks.delete_insight().run(request.form.get('insight_id', '')), 'Insight deleted.')
        elif action == 'generate':
            related_id = request.form.get('related_id', '')
            insight_type = request.form.get('type', '')
            if insight_type == 'match':
                result = hooks.generate_match_insight().run(related_id)
            elif insight_type == 'team':
                result = hooks.generate_team_insight().run(related_id)
            elif insight_type == 'player':
                result = hooks.generate_player_insight().run(related_id, request.form.get('team_id', ''))
            else:
                result = None
                flash('Unknown insight type.', 'error')
            if result is not None:
                _flash_result(result, 'Insight generated.')
        else:
            flash('Unknown action.', 'error')
        return redirect(url_for('admin_insights'))

    completed = hooks.use_matches().map(lambda matches: [m for m in matches if m.completed])
    return render_template('admin/insights.html', insights=hooks.use_all_insights(),
                           matches=completed, teams=hooks.use_teams().map(presentation.sort_teams))


# JSON endpoints

def _serialize(data):
    if isinstance(data, list):
        return [_serialize(item) for item in data]
    if hasattr(data, 'model_dump'):
        return data.model_dump(by_alias=True, exclude={'password_hash', 'admin_secret_code'})
    return data


@app.route('/api/resources/<resource_type>')
def api_resource(resource_type):
    """Tri-state read of a resource; ?wait=0 returns immediately."""
    reader = RESOURCE_READERS.get(resource_type)
    if reader is None:
        return jsonify({'error': f'Unknown resource {resource_type}'}), 404
    wait = request.args.get('wait', '1') not in ('0', 'false')
    result = getattr(hooks, reader)(wait=wait)
    status = 200
    if result.is_loading:
        status = 202
    elif result.is_error:
        status = 503 if isinstance(result.error, Unavailable) else 500
    return jsonify(result.to_dict(_serialize)), status


@app.route('/api/matches/<match_id>/insights', methods=['GET', 'POST'])
def api_match_insights(match_id):
    """List a match's insights, or generate a new one (admins only)."""
    if request.method == 'GET':
        result = hooks.use_insights('match', match_id)
        return jsonify(result.to_dict(_serialize)), 200 if not result.is_error else 500

    if g.user is None or not g.user.is_admin:
        return jsonify({'error': 'Administrator access required'}), 403
    mutation = hooks.generate_match_insight()
    result = mutation.run(match_id)
    if result.is_success:
        return jsonify({'status': mutation.state, 'insight': _serialize(result.data)}), 201
    code = 404 if isinstance(result.error, NotFound) else 400 if isinstance(result.error, ValidationError) else 503
    return jsonify({'status': mutation.state, 'error': result.reason}), code


if __name__ == '__main__':
    app.run(debug=True, port=5000)
