"""Core business logic module.

Modules:
- users: Profiles and roles
- courses: Course CRUD and enrollment lists
- sections: Sections, their elements and unlock settings
- lessons: Lessons and lesson completion marks
- tasks: Tasks and student submissions
- grades: Individual grade records
- exams: Exams, attempts and the auto-grader
- attendance: Daily attendance and its score mapping
- grading: Weighted grade engine, gradebook and course statistics
- progress_unlock: Section progress cache and the unlock engine
- enrollment: Enrollment requests
- home_config: Home page configuration
- leads: Contact-form forwarding
- services: Wiring of all services over one document store
"""

__all__ = [
    "users",
    "courses",
    "sections",
    "lessons",
    "tasks",
    "grades",
    "exams",
    "attendance",
    "grading",
    "progress_unlock",
    "enrollment",
    "home_config",
    "leads",
    "services",
]
