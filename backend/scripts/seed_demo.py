"""CLI script to seed the demo catalog and accounts into the backend DB.
Usage: python scripts/seed_demo.py [--force]
"""
import sys
import argparse
import pathlib
from datetime import date
# Ensure `backend/` is on sys.path so `stemlearn` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from stemlearn.database import create_db_and_tables, open_session
from stemlearn import models, repositories, services

DEMO_GAMES = [
    ('Food Detective', 'Science', 'Food Sources', 'Basic', 100, 'Classify food items', 'game6.1.1.html'),
    ('Living or Non-Living?', 'Science', 'Living Things', 'Basic', 50, 'Classify objects', 'game-living.html'),
    ('Habitat Match', 'Science', 'Living Things', 'Intermediate', 100, 'Match animals to habitats', 'game-habitat.html'),
    ('Body Part Functions', 'Science', 'Living Things', 'Hard', 150, 'Match body parts to functions', 'game-bodyparts.html'),
    ('World Explorer', 'Geography', 'Continents and Oceans', 'Intermediate', 200, 'Learn about countries', 'game6.3.2.html'),
    ('Math Puzzle Challenge', 'Mathematics', 'Basic Operations', 'Basic', 100, 'Solve math operations', 'game-math-basic.html'),
    ('Fraction Fun', 'Mathematics', 'Fractions', 'Intermediate', 150, 'Learn fractions', 'game-fractions.html'),
]

DEMO_ASSIGNMENTS = [
    ('Science Homework - Chapter 1', 'Science', 'Living Things',
     'Complete exercises 1-5 from Chapter 1 about living organisms and their characteristics.', date(2024, 12, 20)),
    ('Math Practice - Fractions', 'Mathematics', 'Fractions',
     'Solve the fraction problems in worksheet attached. Show all your work.', date(2024, 12, 18)),
    ('Geography Project - Continents', 'Geography', 'Continents and Oceans',
     'Create a project showing the 7 continents and 5 oceans with interesting facts.', date(2024, 12, 25)),
]

DEMO_QUESTIONS = [
    {'question_text': 'Which is a characteristic of living things?', 'option_a': 'They can breathe',
     'option_b': 'They can grow', 'option_c': 'They can reproduce', 'option_d': 'All of the above',
     'correct_answer': 'D', 'points': 10},
    {'question_text': 'Plants make food through:', 'option_a': 'Respiration', 'option_b': 'Photosynthesis',
     'option_c': 'Digestion', 'option_d': 'Transpiration', 'correct_answer': 'B', 'points': 10},
    {'question_text': 'Which of these is NOT a living thing?', 'option_a': 'Tree', 'option_b': 'Mushroom',
     'option_c': 'Rock', 'option_d': 'Bacteria', 'correct_answer': 'C', 'points': 10},
]


def main(force: bool = False):
    """Seed games, a teacher, a grade-6 student, assignments and a quiz.

    Nothing is written when games already exist unless `force` is set.
    Results are printed to stdout for a quick CLI feedback loop.
    """
    create_db_and_tables()
    with open_session() as session:
        games = repositories.GameRepository(session)
        if games.count() and not force:
            print('Sample data already exists')
            return
        for name, subject, topic, difficulty, max_score, description, url in DEMO_GAMES:
            if games.get_by_name(name):
                continue
            games.create(models.Game(name=name, subject=subject, topic=topic, difficulty=difficulty,
                                     max_score=max_score, description=description, game_url=url))
        print(f'Games in catalog: {games.count()}')

        auth = services.AuthService(session)
        teacher = repositories.TeacherRepository(session).get_by_code('TCH001')
        if teacher is None:
            teacher = auth.register_teacher('John Smith', 'TCH001', 'teacher@example.com', 'teacher123', 'Science')
            print(f'Sample teacher created with ID: {teacher.id}')
        if repositories.StudentRepository(session).get_by_email('rahul@example.com') is None:
            student = auth.register_student('Rahul Sharma', 'rahul@example.com', 'password123', '6')
            print(f'Sample student created with ID: {student.id}')

        assignments = services.AssignmentService(session)
        for title, subject, topic, description, due in DEMO_ASSIGNMENTS:
            a = assignments.create(teacher.id, title, subject, due, '6', topic=topic, description=description)
            print(f'Sample assignment created with ID: {a.id}')

        quiz = services.QuizService(session).create_quiz(
            teacher.id, 'Science Quiz - Living Things', 'Science', '6', DEMO_QUESTIONS,
            description='Test your knowledge about living organisms', duration=30,
        )
        print(f'Sample quiz created with ID: {quiz.id}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--force', action='store_true', help='Seed even when games already exist')
    args = parser.parse_args()
    main(force=args.force)
