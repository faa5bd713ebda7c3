"""Internationalisation helpers for the KidSessions dashboard."""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Mapping, Optional

RTL_LOCALES = frozenset({"ar"})


class Translator:
    """Store translations for short interface strings."""

    def __init__(self, default_locale: str = "en", *, translations: Optional[Mapping[str, Mapping[str, str]]] = None) -> None:
        self._translations: Dict[str, Dict[str, str]] = {
            "en": {
                "dashboard.title": "Control Panel",
                "dashboard.search": "Search and manage",
                "dashboard.search_placeholder": "Search by child name...",
                "dashboard.no_results": "No results",
                "dashboard.add_title": "Add a child",
                "dashboard.name": "Child name",
                "dashboard.name_placeholder": "e.g. Sam",
                "dashboard.total": "Sessions (on creation)",
                "dashboard.add": "Add",
                "dashboard.selected": "Selected:",
                "dashboard.select_hint": "Pick a child from the list to manage",
                "column.name": "Name",
                "column.sessions": "Sessions",
                "column.remaining": "Remaining",
                "action.decrement": "- session",
                "action.increment": "+ session",
                "action.renew": "Renew",
                "action.history": "Renewal log",
                "action.delete": "Delete",
                "action.cancel": "Cancel",
                "action.save_renewal": "Save renewal",
                "action.close": "Close",
                "action.update_total": "Update quota",
                "pending.tag": "Renewed ✓",
                "pending.tag_title": "Already renewed; the counter resets when the sessions run out",
                "renew.title": "Renew subscription",
                "renew.child": "Child:",
                "renew.amount": "Amount paid",
                "renew.amount_placeholder": "e.g. 25000",
                "renew.hint": "If renewed before {total} sessions are used, the counter is not reset now; it resets automatically once the sessions run out.",
                "renew.immediate_hint": "Renewing resets the counter to zero right away.",
                "renew.invalid_amount": "Please enter a valid amount.",
                "log.title": "Renewal log",
                "log.status": "Status:",
                "log.pending": "Renewal pending",
                "log.not_pending": "No pending renewal",
                "log.last_amount": "Last amount:",
                "log.empty": "No renewals recorded.",
                "log.when": "Date and time",
                "log.amount": "Amount",
                "login.title": "Admin Login",
                "login.pin": "PIN",
                "login.submit": "Sign In",
                "login.incorrect": "Incorrect PIN.",
                "login.logout": "Sign out",
            },
            "ar": {
                "dashboard.title": "لوحة التحكّم",
                "dashboard.search": "بحث وإدارة",
                "dashboard.search_placeholder": "ابحث باسم الطفل...",
                "dashboard.no_results": "لا توجد نتائج",
                "dashboard.add_title": "إضافة طفل",
                "dashboard.name": "اسم الطفل",
                "dashboard.name_placeholder": "مثال: محمد",
                "dashboard.total": "عدد الجلسات (عند الإضافة)",
                "dashboard.add": "إضافة",
                "dashboard.selected": "المحدّد:",
                "dashboard.select_hint": "اختر طفلًا من القائمة لإدارته",
                "column.name": "الاسم",
                "column.sessions": "الجلسات",
                "column.remaining": "المتبقي",
                "action.decrement": "- جلسة",
                "action.increment": "+ جلسة",
                "action.renew": "تجديد",
                "action.history": "سجل التجديد",
                "action.delete": "حذف",
                "action.cancel": "إلغاء",
                "action.save_renewal": "حفظ التجديد",
                "action.close": "إغلاق",
                "action.update_total": "تحديث عدد الجلسات",
                "pending.tag": "مجدَّد ✓",
                "pending.tag_title": "تم التجديد مسبقًا وسيُصفّر العداد عند إكمال الجلسات",
                "renew.title": "تجديد اشتراك",
                "renew.child": "الطفل:",
                "renew.amount": "المبلغ المدفوع",
                "renew.amount_placeholder": "مثال: 25000",
                "renew.hint": "ملاحظة: إذا تم التجديد قبل إكمال {total} جلسة، فلن يُصفّر العداد الآن، بل يُصفّر تلقائيًا عند إكمال الجلسات.",
                "renew.immediate_hint": "التجديد يُصفّر العداد مباشرة.",
                "renew.invalid_amount": "رجاءً أدخل مبلغًا صحيحًا.",
                "log.title": "سجل التجديد",
                "log.status": "الحالة:",
                "log.pending": "تجديد مُعلّق",
                "log.not_pending": "لا يوجد تجديد مُعلّق",
                "log.last_amount": "آخر مبلغ:",
                "log.empty": "لا يوجد تجديدات مسجّلة.",
                "log.when": "التاريخ والوقت",
                "log.amount": "المبلغ",
                "login.title": "تسجيل الدخول",
                "login.pin": "الرمز",
                "login.submit": "دخول",
                "login.incorrect": "رمز غير صحيح.",
                "login.logout": "تسجيل الخروج",
            },
        }
        if translations:
            for locale, mapping in translations.items():
                self._translations.setdefault(locale, {}).update(mapping)
        self.default_locale = default_locale if default_locale in self._translations else "en"

    def set_translation(self, locale: str, key: str, value: str) -> None:
        self._translations.setdefault(locale, {})[key] = value

    def translate(self, key: str, *, locale: Optional[str] = None, **params: object) -> str:
        target_locale = locale or self.default_locale
        language = self._translations.get(target_locale) or self._translations[self.default_locale]
        text = language.get(key) or self._translations["en"].get(key, key)
        return text.format(**params) if params else text

    def direction(self, locale: Optional[str] = None) -> str:
        return "rtl" if (locale or self.default_locale) in RTL_LOCALES else "ltr"

    def available_locales(self) -> tuple[str, ...]:
        return tuple(sorted(self._translations))


def format_timestamp(moment: Optional[datetime]) -> str:
    """Render a stored timestamp as ``YYYY/MM/DD HH:MM``."""

    if moment is None:
        return "—"
    return moment.strftime("%Y/%m/%d %H:%M")


__all__ = ["RTL_LOCALES", "Translator", "format_timestamp"]
