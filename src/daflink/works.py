"""Codified-law works and topic vocabularies detected alongside page citations.

These matches never feed the page index.  They enrich the per-ruling analysis
(``other_source`` citations, detected works, topic categories) and the
filters of the query layer.

All patterns run against text folded by ``daflink.textmatch.normalize`` so
only ASCII quote forms are listed.
"""
from __future__ import annotations

import re
from collections import Counter

from daflink.confidence import Confidence
from daflink.link_types import DetectedTopic, WorkCitation
from daflink.textmatch import NormalizedText, whole_word_pattern

SHULCHAN_ARUCH = 'שולחן ערוך'
RAMBAM = 'רמב"ם'

SHULCHAN_ARUCH_SECTIONS: dict[str, tuple[str, ...]] = {
    "אורח חיים": ('או"ח', "אורח החיים", 'א"ח'),
    "יורה דעה": ('יו"ד', "יורה דיעה", 'י"ד'),
    "אבן העזר": ('אהע"ז', 'אה"ע', 'אבהע"ז', "אבן עזר"),
    "חושן משפט": ('חו"מ', "חושן המשפט", 'ח"מ'),
}

RAMBAM_BOOKS: tuple[str, ...] = (
    "שבת", "עירובין", "יום טוב", "חמץ ומצה", "שופר", "סוכה", "לולב", "מגילה",
    "חנוכה", "תעניות", "קידוש החודש", "תפילה", "ברכות", "מילה", "ציצית",
    "תפילין", "מזוזה", "ספר תורה", "עבודה זרה", "דעות", "תלמוד תורה",
    "יסודי התורה", "אישות", "גירושין", "ייבום", "נערה בתולה", "סוטה", "נזירות",
    "ערכין", "שחיטה", "מאכלות אסורות", "שבועות", "נדרים", "נזקי ממון", "גנבה",
    "גזלה", "נזקי גוף", "רוצח", "מכירה", "זכייה", "שכנים", "שלוחין", "עבדים",
    "שכירות", "שאלה", "מלוה", "טוען", "נחלות", "סנהדרין", "עדות", "ממרים",
    "אבל", "מלכים", "גזילה ואבידה", "חובל ומזיק", "מעשה הקרבנות", "תמידים ומוספין",
)

# Work name -> surface forms.
NAMED_WORKS: dict[str, tuple[str, ...]] = {
    "טור": ("טור",),
    "משנה ברורה": ("משנה ברורה", 'מ"ב', 'מש"ב'),
    "ביאור הלכה": ("ביאור הלכה", 'בה"ל'),
    "ערוך השולחן": ("ערוך השולחן", 'ערה"ש'),
    "בית יוסף": ("בית יוסף", 'ב"י'),
    'רמ"א': ('רמ"א', 'הגהות הרמ"א'),
    'ש"ך': ('ש"ך', "שפתי כהן"),
    'ט"ז': ('ט"ז', "טורי זהב"),
    "פתחי תשובה": ("פתחי תשובה", 'פ"ת'),
    "חתם סופר": ("חתם סופר", 'חת"ס'),
    "אגרות משה": ("אגרות משה", 'אג"מ'),
    "משנה הלכות": ("משנה הלכות",),
    "ציץ אליעזר": ("ציץ אליעזר",),
    "יביע אומר": ("יביע אומר",),
    "יחוה דעת": ("יחוה דעת",),
    "שמירת שבת כהלכתה": ("שמירת שבת כהלכתה", 'שש"כ'),
    "פסקי תשובות": ("פסקי תשובות",),
    "כף החיים": ("כף החיים", 'כה"ח'),
    "בן איש חי": ("בן איש חי", 'בא"ח'),
    "פרי מגדים": ("פרי מגדים", 'פמ"ג'),
    "מגן אברהם": ("מגן אברהם", 'מג"א'),
    "משנה תורה": ("משנה תורה", "יד החזקה"),
    "תוספות": ("תוספות", "תוס'"),
    'רש"י': ('רש"י',),
    'ריטב"א': ('ריטב"א',),
    'רשב"א': ('רשב"א',),
    'רמב"ן': ('רמב"ן',),
    'ר"ן': ('ר"ן', 'הר"ן'),
    "נמוקי יוסף": ("נמוקי יוסף", 'נמו"י'),
    "שלחן ערוך הרב": ("שלחן ערוך הרב", 'שו"ע הרב', 'אדה"ז'),
}

TOPIC_CATEGORIES: dict[str, tuple[str, ...]] = {
    "ממון ומסחר": (
        "מכר", "קנין", "קניין", "כסף", "ממון", "מקח", "שכירות", "שכר", "שטר", "חוב",
        "הלוואה", "ערבות", "משכון", "עסקה", "מחיר", "פיצוי", "פיצויים", "נזק",
        "נזקי ממון", "גזל", "גנבה", "השבה", "פיקדון", "שותפות", "ירושה", "נחלה",
        "צוואה", "מתנה", "הפקר", "מציאה", "אבידה", "חזקה", "קרקע", "מקרקעין", "דירה",
        "בית", "שדה", "נכסי", "נכס", "רכוש", "עיזבון",
    ),
    "נזיקין": (
        "נזיקין", "היזק", "שור", "בור", "אש", "מבעה", "תשלומי נזק", "נזקי גוף",
        "חבלה", "רציחה", "רוצח", "שוגג", "מזיד", "גרמא", "גרמי", "דינא דגרמי",
        "אדם המזיק", "שן", "רגל", "קרן", "תם", "כופר", "צער", "ריפוי", "בושת",
    ),
    "דיני ראיות": (
        "עד", "עדים", "עדות", "הודאה", "הודאת בעל דין", "מיגו", "מוחזק", "ספק",
        "ראיה", "הוכחה", "שבועה", "נאמנות", "כשרות עדים", "פסולי עדות", "עד אחד",
        "שני עדים", "הזמה", "הכחשה", "עדות שקר", "עדי מסירה", "עדי חתימה",
    ),
    "בתי דין": (
        "דין", "דיין", "דיינים", "בית דין", 'בי"ד', "סנהדרין", "פסק", "פסיקה",
        "ערעור", "הוצאה לפועל", "שליח בית דין", "נידוי", "חרם", "כפייה", "מורד",
        "מורדת", "תביעה", "נתבע", "תובע", "טענה", "פשרה", "דין תורה",
    ),
    "אישות ומשפחה": (
        "נישואין", "אישות", "קידושין", "גירושין", "גט", "כתובה", "תוספת כתובה",
        "מזונות", "יבום", "חליצה", "אלמנה", "גרושה", "עגונה", "ממזר", "ייחוס",
        "צניעות", "נדה", "טהרת המשפחה", "מקווה", "חופה", "שידוכין", "אירוסין",
        "נדוניה", "בעל", "אשה",
    ),
    "שבת ומועדים": (
        "שבת", "מלאכה", "מוקצה", "עירוב", "יום טוב", "חג", "פסח", "חמץ", "מצה",
        "סוכות", "לולב", "שופר", "ראש השנה", "יום כיפור", "פורים", "חנוכה", "תענית",
        "צום", "עומר", "שבועות", "חול המועד", "מועד", "קידוש", "הבדלה", "נר שבת",
    ),
    "איסור והיתר": (
        "כשרות", "טריפה", "נבלה", "שחיטה", "בשר", "חלב", "דם", "גיד הנשה", "חלק",
        "תערובת", "ביטול", "נותן טעם", "בליעה", "הכשר כלים", "טבילת כלים",
        "בשר בחלב", "תולעים", "בדיקה", "סימני טריפות", "ריאה", "כבד", "לב",
    ),
    "תפילה וברכות": (
        "תפילה", "ברכה", "ברכות", "קריאת שמע", "שמונה עשרה", "עמידה", "קדיש",
        "קדושה", "ברכת המזון", "זימון", "הלל", "סליחות", "תחנון", "תפילין", "ציצית",
        "מזוזה", "קריאת התורה", "הפטרה", "עליה לתורה",
    ),
    "הלכות כלליות": (
        "מנהג", "גזירה", "תקנה", "חומרא", "קולא", "לכתחילה", "בדיעבד", "מצווה",
        "עבירה", "איסור", "היתר", "מותר", "אסור", "פטור", "חייב", "דאורייתא",
        "דרבנן", "ספיקא", "ודאי", "רוב", "מיעוט", "קים ליה", "פסיקא",
    ),
}

MAX_TOPICS = 20

_NUM = r"(?:\d{1,3}|[א-ת]{1,3}(?:\"[א-ת])?'?)"
_NOT_WORD_BEFORE = r"(?<!\w)"


def _alternation(names: list[str]) -> str:
    ordered = sorted(set(names), key=len, reverse=True)
    return "|".join(r"\s+".join(re.escape(p) for p in n.split()) for n in ordered)


def _build_shulchan_aruch() -> tuple[re.Pattern[str], dict[str, str]]:
    lookup: dict[str, str] = {}
    for name, aliases in SHULCHAN_ARUCH_SECTIONS.items():
        for form in (name, *aliases):
            lookup[" ".join(form.split())] = name
    pattern = re.compile(
        rf"{_NOT_WORD_BEFORE}(?:(?:שולחן\s*ערוך|שו\"ע)\s*,?\s*)?"
        rf"(?P<section>{_alternation(list(lookup))})(?!\w)"
        rf"(?:\s*,?\s*(?:סימן|סי')\s*(?P<siman>{_NUM})(?!\w))?"
        rf"(?:\s*,?\s*(?:סעיף|ס\"ק|סע')\s*(?P<seif>{_NUM})(?!\w))?"
    )
    return pattern, lookup


def _build_rambam() -> re.Pattern[str]:
    return re.compile(
        rf"{_NOT_WORD_BEFORE}(?:(?:רמב\"ם|משנה\s*תורה)\s*,?\s*)?"
        rf"הלכות\s+(?P<book>{_alternation(list(RAMBAM_BOOKS))})(?!\w)"
        rf"(?:\s*,?\s*(?:פרק|פ')\s*(?P<perek>{_NUM})(?!\w))?"
        rf"(?:\s*,?\s*(?:הלכה|הל')\s*(?P<halacha>{_NUM})(?!\w))?"
    )


_SA_RE, _SA_LOOKUP = _build_shulchan_aruch()
_RAMBAM_RE = _build_rambam()
_NAMED_WORK_RES: dict[str, re.Pattern[str]] = {
    work: re.compile(rf"{_NOT_WORD_BEFORE}(?:{_alternation(list(forms))})(?!\w)")
    for work, forms in NAMED_WORKS.items()
}


def _reference(parts: list[tuple[str, str | None]]) -> str | None:
    joined = " ".join(f"{label} {value}" for label, value in parts if value)
    return joined or None


def scan_works(norm: NormalizedText) -> list[WorkCitation]:
    """Find codified-law citations, ordered by offset.

    Shulchan Aruch and Rambam citations are reported per occurrence; other
    named works once each, at their first occurrence.
    """
    text = norm.text
    found: list[WorkCitation] = []
    for m in _SA_RE.finditer(text):
        section = _SA_LOOKUP.get(" ".join(m.group("section").split()), m.group("section"))
        siman, seif = m.group("siman"), m.group("seif")
        found.append(
            WorkCitation(
                work=SHULCHAN_ARUCH,
                section=section,
                reference=_reference([("סימן", siman), ("סעיף", seif)]),
                raw_snippet=norm.original_slice(m.start(), m.end()).strip(),
                confidence=Confidence.HIGH if siman else Confidence.MEDIUM,
                start=norm.original_span(m.start(), m.end())[0],
            )
        )
    for m in _RAMBAM_RE.finditer(text):
        perek, halacha = m.group("perek"), m.group("halacha")
        found.append(
            WorkCitation(
                work=RAMBAM,
                section="הלכות " + " ".join(m.group("book").split()),
                reference=_reference([("פרק", perek), ("הלכה", halacha)]),
                raw_snippet=norm.original_slice(m.start(), m.end()).strip(),
                confidence=Confidence.HIGH if perek else Confidence.MEDIUM,
                start=norm.original_span(m.start(), m.end())[0],
            )
        )
    for work, pattern in _NAMED_WORK_RES.items():
        m = pattern.search(text)
        if m is None:
            continue
        found.append(
            WorkCitation(
                work=work,
                section=None,
                reference=None,
                raw_snippet=norm.original_slice(m.start(), m.end()),
                confidence=Confidence.LOW,
                start=norm.original_span(m.start(), m.end())[0],
            )
        )
    found.sort(key=lambda w: (w.start, w.work))
    return found


def works_mentioned(citations: list[WorkCitation]) -> list[str]:
    """Distinct work names in first-seen order."""
    seen: dict[str, None] = {}
    for c in citations:
        seen.setdefault(c.work, None)
    return list(seen)


def detect_topics(text: str, *, limit: int = MAX_TOPICS) -> list[DetectedTopic]:
    """Count whole-word topic keywords; keep the most frequent *limit* topics.

    A keyword listed under several categories is attributed to the first.
    """
    if not text.strip():
        return []
    counts: Counter[str] = Counter()
    category_of: dict[str, str] = {}
    for category, keywords in TOPIC_CATEGORIES.items():
        for keyword in keywords:
            if keyword in category_of:
                continue
            n = len(whole_word_pattern(keyword).findall(text))
            if n:
                category_of[keyword] = category
                counts[keyword] = n
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [DetectedTopic(topic, category_of[topic], n) for topic, n in ranked]


def topic_categories(topics: list[DetectedTopic]) -> list[str]:
    seen: dict[str, None] = {}
    for t in topics:
        seen.setdefault(t.category, None)
    return list(seen)
