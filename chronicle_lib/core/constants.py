"""Constants and keyword tables used throughout Chronicle.

The keyword tables are data: they seed ``HeuristicVocabulary`` and can be
replaced per project without touching the detection logic.
"""


class ConfigDefaults:
    """Default values for LLM configuration."""

    DEFAULT_MODEL_PROVIDER = "gemini"
    DEFAULT_TEMPERATURE = 0.7
    DEFAULT_MAX_TOKENS = 8192
    DEFAULT_TIMEOUT_SECONDS = 60.0
    DEFAULT_MAX_RETRIES = 2
    DEFAULT_RETRY_BASE_DELAY = 2.0
    DEFAULT_RETRY_MAX_DELAY = 5.0
    DEFAULT_BATCH_DELAY = 0.5


class EntityTypes:
    """Codex entity categories."""

    CHARACTER = "character"
    LOCATION = "location"
    ITEM = "item"
    FACTION = "faction"
    CONCEPT = "concept"

    ALL = (CHARACTER, LOCATION, ITEM, FACTION, CONCEPT)

    LABELS = {
        CHARACTER: "角色",
        LOCATION: "地点",
        ITEM: "物品",
        FACTION: "势力",
        CONCEPT: "概念",
    }


class CharacterStatus:
    """Lifecycle states of a project character."""

    ACTIVE = "active"
    PENDING = "pending"
    DECEASED = "deceased"


class CharacterRoles:
    """Narrative roles of a project character."""

    PROTAGONIST = "protagonist"
    SUPPORTING = "supporting"
    ANTAGONIST = "antagonist"

    LABELS = {
        PROTAGONIST: "主角",
        SUPPORTING: "配角",
        ANTAGONIST: "反派",
    }


class ThreadStatus:
    """Plot thread lifecycle states."""

    ACTIVE = "active"
    HINTED = "hinted"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"

    OPEN = (ACTIVE, HINTED)
    TERMINAL = (RESOLVED, ABANDONED)


class ThreadImportance:
    """Plot thread importance levels."""

    MINOR = "minor"
    MAJOR = "major"
    CRITICAL = "critical"


class Severity:
    """Severity labels used by validation results and warnings."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    WARNING = "warning"
    ERROR = "error"


# Codex attribute that marks a character's death
DEATH_STATUS_KEY = "状态"
DEATH_STATUS_VALUE = "死亡"

# Verbs that anchor a forbidden-event match (death, breakthrough, betrayal,
# combat outcome, discovery, movement, trials)
CORE_ACTION_WORDS = (
    "击败", "战胜", "打败", "消灭", "杀死", "斩杀", "覆灭",
    "突破", "晋级", "进阶", "觉醒", "获得", "得到", "习得",
    "发现", "揭露", "揭开", "真相",
    "结盟", "联合", "背叛", "反目", "决裂",
    "逃离", "离开", "进入", "到达", "返回",
    "比赛", "大赛", "考核", "试炼", "挑战",
    "死亡", "牺牲", "陨落", "复活", "苏醒", "重生",
)

# Action words that mark a summary clause as an event
SUMMARY_ACTION_WORDS = (
    "击败", "战胜", "打败", "消灭", "杀死", "斩杀", "覆灭",
    "突破", "晋级", "进阶", "觉醒", "获得", "得到", "习得",
    "发现", "揭露", "揭开", "知道", "了解", "真相",
    "结盟", "联合", "背叛", "反目", "决裂",
    "逃离", "离开", "进入", "到达", "返回", "前往",
    "比赛", "大赛", "考核", "试炼", "挑战", "参加",
    "死亡", "牺牲", "陨落", "复活", "苏醒",
)

# Words that mark a mention of a dead character as a memory or flashback
RETROSPECTIVE_MARKERS = (
    "曾经", "当年", "想起", "回忆", "以前", "从前",
    "那时", "往事", "故去", "已故", "去世", "死后",
)

DEATH_KEYWORDS = (
    "死了", "死亡", "牺牲", "去世", "陨落", "身亡", "殒命",
    "断气", "咽气", "没了呼吸", "停止了呼吸", "闭上了眼睛",
    "倒在血泊", "永远地", "再也不会", "化为灰烬", "魂飞魄散",
    "灰飞烟灭", "香消玉殒", "与世长辞", "命丧", "丧命",
)

# Lines of a world setting that carry its core rules
WORLD_SETTING_KEYWORDS = (
    "等级", "境界", "修炼", "力量", "体系", "规则", "世界", "时代", "背景",
)

# Separators used to split event descriptions into keywords
EVENT_KEYWORD_SEPARATORS = r"[，。、\s]+"
# Clause separators for plot text and summaries
MAIN_PLOT_CLAUSE_SEPARATORS = r"[。；;]"
SUMMARY_CLAUSE_SEPARATORS = r"[，。！？、；]"
SENTENCE_SEPARATORS = r"[。！？；]"
