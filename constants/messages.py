class Messages:
    """Localized user-facing messages. Arabic is the default language."""

    DEFAULT_LANG = "AR"

    AR = {
        "UNAUTHORIZED": "غير مصرح",
        "SESSION_NOT_FOUND": "لم يتم العثور على جلسة الاختبار",
        "SESSION_FORBIDDEN": "غير مصرح بالوصول لهذه الجلسة",
        "SESSION_NOT_PAUSED": "هذه الجلسة ليست متوقفة",
        "SESSION_NOT_IN_PROGRESS": "الاختبار ليس قيد التقدم",
        "PAUSE_ONLY_IN_PROGRESS": "يمكن إيقاف الاختبارات الجارية فقط",
        "PAUSE_LIMIT_REACHED": "لديك اختبار متوقف بالفعل. يرجى استئنافه أو إنهاؤه قبل إيقاف اختبار آخر",
        "INVALID_REMAINING_TIME": "الوقت المتبقي غير صالح",
        "INVALID_BATCH_INDEX": "رقم الدفعة غير صالح",
        "GENERATION_IN_PROGRESS": "جاري توليد الأسئلة بالفعل",
        "GENERATION_UNAVAILABLE": "خدمة التوليد غير متاحة حالياً",
        "GENERATION_FAILED": "فشل في إنشاء الأسئلة. يرجى المحاولة مرة أخرى.",
        "ALL_QUESTIONS_GENERATED": "تم توليد جميع الأسئلة لهذه الجلسة",
        "INVALID_DATA": "بيانات غير صالحة",
        "INVALID_QUESTION_INDEX": "رقم السؤال غير صالح",
        "INVALID_ACTION": "إجراء غير صالح",
        "ANSWER_ALREADY_SUBMITTED": "تمت الإجابة على هذا السؤال بالفعل",
        "RATE_LIMITED": "لقد تجاوزت الحد المسموح. يرجى المحاولة لاحقاً",
        "RESUMED": "تم استئناف الاختبار بنجاح.",
        "ALREADY_RESUMED": "الاختبار قيد التقدم بالفعل.",
        "PAUSED": "تم إيقاف الاختبار بنجاح. يمكنك استئنافه في أي وقت.",
        "SERVER_ERROR": "خطأ في الخادم",
    }

    EN = {
        "UNAUTHORIZED": "Unauthorized",
        "SESSION_NOT_FOUND": "Exam session not found",
        "SESSION_FORBIDDEN": "You are not allowed to access this session",
        "SESSION_NOT_PAUSED": "This session is not paused",
        "SESSION_NOT_IN_PROGRESS": "The exam is not in progress",
        "PAUSE_ONLY_IN_PROGRESS": "Only in-progress exams can be paused",
        "PAUSE_LIMIT_REACHED": "You already have a paused exam. Resume or finish it before pausing another one",
        "INVALID_REMAINING_TIME": "Invalid remaining time",
        "INVALID_BATCH_INDEX": "Invalid batch index",
        "GENERATION_IN_PROGRESS": "Questions are already being generated",
        "GENERATION_UNAVAILABLE": "The generation service is currently unavailable",
        "GENERATION_FAILED": "Failed to generate questions. Please try again.",
        "ALL_QUESTIONS_GENERATED": "All questions for this session have been generated",
        "INVALID_DATA": "Invalid data",
        "INVALID_QUESTION_INDEX": "Invalid question index",
        "INVALID_ACTION": "Invalid action",
        "ANSWER_ALREADY_SUBMITTED": "This question has already been answered",
        "RATE_LIMITED": "Too many requests. Please try again later",
        "RESUMED": "Exam resumed successfully.",
        "ALREADY_RESUMED": "The exam is already in progress.",
        "PAUSED": "Exam paused successfully. You can resume it at any time.",
        "SERVER_ERROR": "Server error",
    }

    @classmethod
    def get(cls, key: str, lang: str = DEFAULT_LANG) -> str:
        table = cls.EN if (lang or "").upper() == "EN" else cls.AR
        return table.get(key, cls.AR.get(key, key))
