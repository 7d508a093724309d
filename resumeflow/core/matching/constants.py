"""Fixed scoring constants for the matching engine.

Weights and tables are constants on purpose: a change in business weighting
is a code change, so stored MatchResults stay comparable with each other.
"""

from typing import NamedTuple

from ..models.enums import JobLevel, Proficiency

SKILLS_WEIGHT = 0.5
EXPERIENCE_WEIGHT = 0.3
EDUCATION_WEIGHT = 0.2

# Priority and recommendation bands, compared with >=
EXCELLENT_THRESHOLD = 85
HIGH_THRESHOLD = 70
MEDIUM_THRESHOLD = 50

PROFICIENCY_POINTS: dict[Proficiency, int] = {
    Proficiency.EXPERT: 100,
    Proficiency.ADVANCED: 85,
    Proficiency.INTERMEDIATE: 70,
    Proficiency.NONE: 0,
}


class ExperienceBand(NamedTuple):
    min_years: float
    ideal_years: float
    max_years: float


EXPERIENCE_BANDS: dict[JobLevel, ExperienceBand] = {
    JobLevel.INTERN: ExperienceBand(0, 0, 1),
    JobLevel.JUNIOR: ExperienceBand(1, 2, 3),
    JobLevel.MID_LEVEL: ExperienceBand(2, 3, 5),
    JobLevel.SENIOR: ExperienceBand(5, 7, 12),
    JobLevel.LEAD: ExperienceBand(6, 9, 15),
    JobLevel.MANAGER: ExperienceBand(6, 10, 20),
}

UNKNOWN_LEVEL_SCORE = 50
NO_EDUCATION_SCORE = 50
OVERQUALIFIED_PENALTY_PER_YEAR = 2
OVERQUALIFIED_MAX_PENALTY = 15

# Highest degree, ordered from strongest to weakest
PHD = "phd"
MASTER = "master"
BACHELOR = "bachelor"
NO_DEGREE = "none"

DEGREE_TOKENS: dict[str, tuple[str, ...]] = {
    PHD: ("phd", "ph.d", "doctorate", "doctor of", "tiến sĩ"),
    MASTER: ("master", "msc", "m.sc", "mba", "thạc sĩ"),
    BACHELOR: ("bachelor", "bsc", "b.sc", "b.eng", "cử nhân", "kỹ sư", "đại học"),
}

EDUCATION_SCORES: dict[JobLevel, dict[str, int]] = {
    JobLevel.INTERN: {PHD: 100, MASTER: 100, BACHELOR: 100, NO_DEGREE: 75},
    JobLevel.JUNIOR: {PHD: 100, MASTER: 100, BACHELOR: 100, NO_DEGREE: 60},
    JobLevel.MID_LEVEL: {PHD: 100, MASTER: 100, BACHELOR: 90, NO_DEGREE: 50},
    JobLevel.SENIOR: {PHD: 100, MASTER: 100, BACHELOR: 80, NO_DEGREE: 40},
    JobLevel.LEAD: {PHD: 100, MASTER: 100, BACHELOR: 70, NO_DEGREE: 30},
    JobLevel.MANAGER: {PHD: 100, MASTER: 100, BACHELOR: 70, NO_DEGREE: 30},
}

# Canonical skill -> accepted spellings. Normalized at import by the engine.
SKILL_ALIASES: dict[str, tuple[str, ...]] = {
    "javascript": ("js", "es6", "ecmascript", "es2015", "es2020"),
    "typescript": ("ts",),
    "react.js": ("react", "reactjs", "react js"),
    "react native": ("reactnative", "rn"),
    "node.js": ("node", "nodejs", "node js"),
    "vue.js": ("vue", "vuejs", "vue js"),
    "angular": ("angularjs", "angular.js"),
    "next.js": ("next", "nextjs"),
    "mongodb": ("mongo", "mongo db"),
    "postgresql": ("postgres", "psql", "pg"),
    "mysql": ("my sql",),
    "kubernetes": ("k8s",),
    "docker": ("containerization", "containers"),
    "c#": ("csharp", "c sharp"),
    "c++": ("cpp", "cplusplus"),
    ".net": ("dotnet", "asp.net", "aspnet"),
    "machine learning": ("ml",),
    "artificial intelligence": ("ai",),
    "natural language processing": ("nlp",),
    "tensorflow": ("tf",),
    "pytorch": ("torch",),
}

# Keyword adjacency patterns; "{skill}" is replaced with the lowercase skill.
# Anything else matched counts as intermediate.
EXPERT_PATTERNS = ("expert {skill}", "{skill} expert", "expert in {skill}")
ADVANCED_PATTERNS = (
    "advanced {skill}",
    "{skill} advanced",
    "proficient {skill}",
    "proficient in {skill}",
)

# Suggested screening status
AUTO_APPROVE_SCORE = 85
AUTO_APPROVE_CRITICAL_RATE = 70
AUTO_REJECT_SCORE = 30
AUTO_REJECT_CRITICAL_RATE = 30
