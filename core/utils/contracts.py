"""契約設計ユーティリティ"""


def require(condition: bool, message: str) -> None:
    """
    前提条件（Precondition）をチェックする

    関数の開始時に使用し、引数や状態が期待通りであることを保証する。

    Args:
        condition: チェックする条件（Falseの場合に例外）
        message: 条件が満たされない場合のエラーメッセージ

    Raises:
        ValueError: 条件がFalseの場合

    Examples:
        >>> def download_chapter(manga, chapter):
        ...     require(chapter.id != "", "chapter id must not be empty")
        ...     # キューに追加
    """
    if not condition:
        raise ValueError(f"Precondition failed: {message}")


def ensure(condition: bool, message: str) -> None:
    """
    事後条件（Postcondition）をチェックする

    関数の終了前に使用し、結果が期待通りであることを保証する。

    Args:
        condition: チェックする条件（Falseの場合に例外）
        message: 条件が満たされない場合のエラーメッセージ

    Raises:
        AssertionError: 条件がFalseの場合

    Examples:
        >>> def record_completion(records, record):
        ...     records.append(record)
        ...     ensure(find_record(records, record.chapter_id) is not None, "record must be stored")
    """
    if not condition:
        raise AssertionError(f"Postcondition failed: {message}")
