"""
Data manager for JSON quiz files and quiz definition validation.
"""
import json
import os
import logging
from typing import Any, Dict, List, Optional
from pathlib import Path

from .models import Question, QuizDefinition


SAMPLE_QUIZ = {
    "id": 1,
    "title": "World Wonders Quiz",
    "questions": [
        {
            "question": "Which of these is one of the Seven Wonders of the Ancient World?",
            "options": ["Great Wall of China", "Pyramids of Giza", "Eiffel Tower", "Statue of Liberty"],
            "correct": "Pyramids of Giza"
        },
        {
            "question": "Which wonder is located in Brazil?",
            "options": ["Colosseum", "Taj Mahal", "Christ the Redeemer", "Machu Picchu"],
            "correct": "Christ the Redeemer"
        }
    ]
}


class DataManager:
    """Loads and validates JSON quiz definition files."""

    MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB
    MIN_OPTIONS = 2

    def __init__(self, quiz_directory: str = "./quizzes/"):
        """
        Initialize DataManager with quiz directory path.

        Args:
            quiz_directory: Path to directory containing JSON quiz files
        """
        self.quiz_directory = Path(quiz_directory)
        self.loaded_quizzes: Dict[int, QuizDefinition] = {}
        self.logger = logging.getLogger(__name__)
        self.load_errors: List[str] = []
        self.sample_quiz_created = False

    def load_quiz_files(self) -> Dict[int, QuizDefinition]:
        """
        Load all JSON quiz files from the quiz directory.

        A broken file is reported in ``load_errors`` and skipped; the other
        files still load.

        Returns:
            Dictionary mapping quiz ids to QuizDefinition objects
        """
        self.loaded_quizzes.clear()
        self.load_errors.clear()
        self.sample_quiz_created = False

        directory_result = self._ensure_quiz_directory()
        if not directory_result['success']:
            self.load_errors.append(directory_result['error'])
            return self.loaded_quizzes

        try:
            json_files = sorted(self.quiz_directory.glob("*.json"))
        except OSError as e:
            self.load_errors.append(f"System error scanning {self.quiz_directory}: {e}")
            return self.loaded_quizzes

        if not json_files:
            self.logger.warning(f"No JSON files found in {self.quiz_directory}")
            self.load_errors.append(f"No quiz files found in {self.quiz_directory}")
            return self._create_sample_quiz()

        for json_file in json_files:
            load_result = self._load_quiz_file_safely(json_file)
            if not load_result['success']:
                self.load_errors.append(f"{json_file.name}: {load_result['error']}")

        if not self.loaded_quizzes:
            self.logger.error("No quiz files could be loaded successfully")
        else:
            self.logger.info(f"Successfully loaded {len(self.loaded_quizzes)} quizzes")
        if self.load_errors:
            self.logger.warning(f"Encountered {len(self.load_errors)} loading errors")

        return self.loaded_quizzes

    def validate_quiz_structure(self, data: Any) -> Optional[str]:
        """
        Validate that JSON data has the correct quiz structure.

        Expected structure:
        {
            "id": int,
            "title": str,
            "questions": [
                {
                    "question": str,
                    "options": [str, ...],   # at least two
                    "correct": str,          # equal to exactly one option
                    "link": str              # optional
                }
            ]
        }

        Args:
            data: Parsed JSON data to validate

        Returns:
            None if the structure is valid, otherwise a description of the problem
        """
        if not isinstance(data, dict):
            return "Quiz data must be a JSON object"

        quiz_id = data.get("id")
        if isinstance(quiz_id, bool) or not isinstance(quiz_id, int) or quiz_id < 0:
            return "'id' must be a non-negative integer"

        if not isinstance(data.get("title"), str) or not data["title"].strip():
            return "'title' must be a non-empty string"

        questions = data.get("questions")
        if not isinstance(questions, list) or not questions:
            return "'questions' must be a non-empty array"

        for i, question_data in enumerate(questions):
            if not isinstance(question_data, dict):
                return f"Question {i} must be an object"

            if not isinstance(question_data.get("question"), str):
                return f"Question {i} 'question' field must be a string"

            options = question_data.get("options")
            if not isinstance(options, list) or not all(isinstance(o, str) for o in options):
                return f"Question {i} 'options' field must be an array of strings"
            if len(options) < self.MIN_OPTIONS:
                return f"Question {i} needs at least {self.MIN_OPTIONS} options"

            correct = question_data.get("correct")
            if not isinstance(correct, str):
                return f"Question {i} 'correct' field must be a string"
            matches = options.count(correct)
            if matches != 1:
                return f"Question {i} 'correct' must match exactly one option, matched {matches}"

            link = question_data.get("link")
            if link is not None and not isinstance(link, str):
                return f"Question {i} 'link' field must be a string"

        return None

    def parse_quiz(self, data: dict) -> QuizDefinition:
        """Build a QuizDefinition from validated data."""
        questions = tuple(
            Question(
                prompt=question_data["question"],
                options=tuple(question_data["options"]),
                correct=question_data["correct"],
                link=question_data.get("link")
            )
            for question_data in data["questions"]
        )
        return QuizDefinition(id=data["id"], title=data["title"], questions=questions)

    def get_quiz(self, quiz_id: int) -> Optional[QuizDefinition]:
        return self.loaded_quizzes.get(quiz_id)

    def get_available_quizzes(self) -> List[QuizDefinition]:
        """Loaded quizzes ordered by id."""
        return [self.loaded_quizzes[quiz_id] for quiz_id in sorted(self.loaded_quizzes)]

    def get_latest_quiz(self) -> Optional[QuizDefinition]:
        """
        Quiz offered by /start.

        Returns:
            The quiz with the highest id, or None if nothing is loaded
        """
        if not self.loaded_quizzes:
            return None
        return self.loaded_quizzes[max(self.loaded_quizzes)]

    def get_quiz_count(self) -> int:
        return len(self.loaded_quizzes)

    def _ensure_quiz_directory(self) -> Dict[str, Any]:
        try:
            if not self.quiz_directory.exists():
                self.quiz_directory.mkdir(parents=True, exist_ok=True)
                self.logger.info(f"Created quiz directory: {self.quiz_directory}")

            if not os.access(self.quiz_directory, os.R_OK):
                return {
                    'success': False,
                    'error': f"Permission denied: Cannot read from {self.quiz_directory}"
                }
            return {'success': True}

        except PermissionError:
            return {
                'success': False,
                'error': f"Permission denied: Cannot access {self.quiz_directory}"
            }
        except OSError as e:
            return {
                'success': False,
                'error': f"System error accessing {self.quiz_directory}: {e}"
            }

    def _load_quiz_file_safely(self, json_file: Path) -> Dict[str, Any]:
        """
        Load a single quiz file.

        Args:
            json_file: Path to the JSON file to load

        Returns:
            Dictionary with success status and error message if applicable
        """
        try:
            file_size = json_file.stat().st_size
            if file_size > self.MAX_FILE_SIZE:
                return {
                    'success': False,
                    'error': f"File too large ({file_size / 1024 / 1024:.1f}MB). "
                             f"Maximum size is {self.MAX_FILE_SIZE / 1024 / 1024}MB"
                }

            with open(json_file, 'r', encoding='utf-8') as f:
                data = json.load(f)

            problem = self.validate_quiz_structure(data)
            if problem:
                self.logger.error(f"Invalid quiz structure in {json_file}: {problem}")
                return {'success': False, 'error': problem}

            definition = self.parse_quiz(data)
            if definition.id in self.loaded_quizzes:
                return {
                    'success': False,
                    'error': f"Duplicate quiz id {definition.id}"
                }

            self.loaded_quizzes[definition.id] = definition
            self.logger.info(
                f"Loaded quiz {definition.id} '{definition.title}' with {definition.total_questions} questions"
            )
            return {'success': True}

        except json.JSONDecodeError as e:
            self.logger.error(f"Invalid JSON in {json_file}: {e}")
            return {'success': False, 'error': f"Invalid JSON: {e}"}
        except UnicodeDecodeError as e:
            self.logger.error(f"Quiz file {json_file} is not valid UTF-8: {e}")
            return {'success': False, 'error': f"Invalid encoding: {e}"}
        except PermissionError:
            return {'success': False, 'error': "Permission denied"}
        except OSError as e:
            return {'success': False, 'error': f"System error: {e}"}

    def _create_sample_quiz(self) -> Dict[int, QuizDefinition]:
        """Write and load a sample quiz when the directory is empty."""
        sample_file_path = self.quiz_directory / "world_wonders.json"
        try:
            if not sample_file_path.exists():
                with open(sample_file_path, 'w', encoding='utf-8') as f:
                    json.dump(SAMPLE_QUIZ, f, indent=2, ensure_ascii=False)
                self.logger.info(f"Created sample quiz file: {sample_file_path}")
        except OSError as e:
            self.logger.error(f"Failed to write sample quiz: {e}")
            self.load_errors.append(f"Failed to write sample quiz: {e}")

        definition = self.parse_quiz(SAMPLE_QUIZ)
        self.loaded_quizzes[definition.id] = definition
        self.sample_quiz_created = True
        return self.loaded_quizzes

    def get_load_errors(self) -> List[str]:
        return self.load_errors.copy()

    def has_load_errors(self) -> bool:
        return len(self.load_errors) > 0

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Summary of the last load operation.

        Returns:
            Dictionary with loading statistics and status
        """
        return {
            'total_quizzes': len(self.loaded_quizzes),
            'has_errors': self.has_load_errors(),
            'error_count': len(self.load_errors),
            'errors': self.get_load_errors(),
            'sample_created': self.sample_quiz_created,
            'quiz_directory': str(self.quiz_directory),
            'available_quizzes': sorted(self.loaded_quizzes)
        }
