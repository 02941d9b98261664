"""
Configuration for the Learning Insights Dashboard

Contains column alias tables, classification thresholds and display settings.
To support a new export layout or change a threshold, simply edit the values below.
"""

from types import MappingProxyType

# =============================================================================
# COLUMN ALIASES
# =============================================================================
# Each canonical field maps to an ordered list of column headers.
# The first header present in a row with a non-empty value wins.

FIELD_ALIASES = MappingProxyType({
    "pre_score": ("前測成績", "前測", "pre_score", "preScore", "Pre Score", "Pre-test", "pre"),
    "post_score": ("後測成績", "後測", "post_score", "postScore", "Post Score", "Post-test", "post"),
    "school": ("學校名稱", "學校", "school", "School", "school_name"),
    "grade": ("年級", "grade", "Grade", "class"),
    "subject": ("科目", "subject", "Subject"),
    "usage_time": ("使用總時數", "使用時間", "usage_time", "usageTime", "Usage Time", "duration"),
    "tasks_completed": ("任務完成數", "完成任務數", "tasks_completed", "tasksCompleted", "Tasks Completed"),
    "practice_quiz_count": ("練習題測驗", "練習題數", "practice_quiz_count", "practiceQuizCount", "Practice Quizzes"),
    "name": ("姓名", "學生姓名", "name", "Name", "student_name", "Student Name"),
    "teacher": ("教師", "老師", "教師姓名", "teacher", "Teacher", "instructor"),
})

# =============================================================================
# DEFAULTS & SENTINELS
# =============================================================================

ALL = "All"
UNKNOWN_SCHOOL = "Unknown School"
DEFAULT_SUBJECT = "General"
DEFAULT_GRADE = ""

# =============================================================================
# CLASSIFICATION THRESHOLDS
# =============================================================================
# Comparisons are strict/inclusive exactly as used in analytics.classify

FAILING_SCORE = 60          # post score below this -> NeedsAttention
HIGH_USAGE_MINUTES = 60     # more than this with no gain -> IneffectiveLearning
LOW_USAGE_MINUTES = 30      # less than this with a big gain -> HighPotential
HIGH_GAIN_POINTS = 10

SCATTER_POINT_LIMIT = 100

# =============================================================================
# SUPPLEMENTARY ANALYTICS
# =============================================================================

# Tasks completed: low < 10 <= mid < 20 <= high
TASK_TIER_BOUNDS = (10, 20)
TASK_TIER_LABELS = ("Low completion", "Mid completion", "High completion")

# (record attribute, display label) in heat map order
CORRELATION_FACTORS = (
    ("pre_score", "Pre Score"),
    ("post_score", "Post Score"),
    ("usage_minutes", "Usage Minutes"),
    ("tasks_completed", "Tasks Completed"),
    ("practice_quiz_count", "Practice Quizzes"),
)

# =============================================================================
# TAG DISPLAY SETTINGS
# =============================================================================

TAG_PRIORITY = ("NeedsAttention", "IneffectiveLearning", "HighPotential", "Stable")

TAG_LABELS = {
    "NeedsAttention": "Needs Attention",
    "IneffectiveLearning": "Ineffective Learning",
    "HighPotential": "High Potential",
    "Stable": "Stable",
}

TAG_COLORS = {
    "NeedsAttention": "#dc3545",       # Red
    "IneffectiveLearning": "#f57c00",  # Orange
    "HighPotential": "#1976d2",        # Blue
    "Stable": "#28a745",               # Green
}

# =============================================================================
# SAMPLE DATA
# =============================================================================

SAMPLE_SCHOOLS = ("恆春國小", "車城國小", "滿州國中", "高樹國小", "里港國小")
SAMPLE_SUBJECTS = ("Maths", "English", "Science")
SAMPLE_SIZE = 120
SAMPLE_SEED = 113
