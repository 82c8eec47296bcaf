import json

from playrooms import db
from playrooms.models import Achievement, PlayerProfile, Puzzle, SessionTemplate

DIFFICULTY_BY_POSITION = ('easy', 'medium', 'hard')


def load_catalog(path):
    with open(path, encoding='utf-8') as fh:
        return json.load(fh)


def seed_catalog(data):
    """Upsert puzzles, session templates and achievements.

    ``sessions`` in the dataset is a list of puzzle-id lists; templates are
    named ``session-1``, ``session-2``... and take their difficulty from
    their position. Template totals are computed from the puzzles they use.
    """
    puzzles = {}
    for q in data.get('challenges', []):
        puzzle = db.session.get(Puzzle, q['challenge_id']) or Puzzle(challenge_id=q['challenge_id'])
        puzzle.type = q['type']
        puzzle.sort_order = q.get('order', 0)
        puzzle.question = q.get('question', '')
        puzzle.options = json.dumps(q['options']) if q.get('options') else None
        puzzle.correct_answer = q.get('correct_answer')
        puzzle.emojis = q.get('emojis')
        puzzle.target_text = q.get('target_text')
        puzzle.max_score = q.get('max_score', 100)
        puzzle.time_limit = q.get('time_limit', 30)
        puzzle.difficulty = q.get('difficulty', 'medium')
        puzzle.category = q.get('category')
        puzzle.is_active = q.get('is_active', True)
        db.session.add(puzzle)
        puzzles[puzzle.challenge_id] = puzzle

    templates = 0
    for idx, challenge_ids in enumerate(data.get('sessions', [])):
        missing = [cid for cid in challenge_ids if cid not in puzzles and not db.session.get(Puzzle, cid)]
        if missing:
            raise ValueError(f'session {idx + 1} references unknown challenges: {missing}')
        used = [puzzles.get(cid) or db.session.get(Puzzle, cid) for cid in challenge_ids]
        template_id = f'session-{idx + 1}'
        template = db.session.get(SessionTemplate, template_id) or SessionTemplate(template_id=template_id)
        template.name = f'Game Session {idx + 1}'
        template.difficulty = DIFFICULTY_BY_POSITION[idx] if idx < len(DIFFICULTY_BY_POSITION) else 'hard'
        template.challenges = json.dumps(list(challenge_ids))
        template.total_time = sum(p.time_limit for p in used)
        template.max_score = sum(p.max_score for p in used)
        db.session.add(template)
        templates += 1

    for a in data.get('achievements', []):
        achievement = db.session.get(Achievement, a['id']) or Achievement(id=a['id'])
        achievement.name = a['name']
        achievement.description = a.get('description')
        achievement.icon = a.get('icon')
        achievement.category = a.get('category')
        achievement.requirement_type = a['requirement']['type']
        achievement.requirement_value = a['requirement']['value']
        achievement.requirement_condition = a['requirement']['condition']
        achievement.reward_experience = a.get('reward', {}).get('experience', 0)
        db.session.add(achievement)

    db.session.commit()
    return {
        'challenges': len(puzzles),
        'templates': templates,
        'achievements': len(data.get('achievements', [])),
    }


def seed_demo_players(usernames, password):
    for name in usernames:
        if PlayerProfile.query.filter_by(username=name).first():
            continue
        profile = PlayerProfile(username=name, display_name=name)
        profile.set_password(password)
        db.session.add(profile)
    db.session.commit()
