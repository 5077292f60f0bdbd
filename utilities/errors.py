"""
ツアーエンジン共通の例外クラス
"""


class DemoError(Exception):
    """全てのツアー関連エラーの基底クラス"""
    pass


class NotFound(DemoError):
    """未登録のセッションIDが指定された"""
    pass


class AlreadyExists(DemoError):
    """同じセッションIDのブラウザが既に存在する"""
    pass


class InvalidInput(DemoError):
    """呼び出し側の入力が不正（空のURLリスト、必須項目の欠落など）"""
    pass


class InvalidAction(InvalidInput):
    """BrowserActionとして解釈できない辞書"""
    pass


class UnknownActionType(InvalidAction):
    """click/scroll/navigate/type/highlight 以外のアクション種別"""

    def __init__(self, action_type):
        super().__init__(f"Unknown action type: {action_type!r}")
        self.action_type = action_type


class InvalidState(DemoError):
    """現在のツアー状態では実行できない操作"""
    pass


class SessionEnded(DemoError):
    """終了済みセッションへの操作"""
    pass


class SessionFailed(DemoError):
    """ブラウザプロセスの異常などでセッションが強制終了された"""
    pass


class ElementNotFound(DemoError):
    """セレクタに一致する要素が見つからない（回復可能）"""

    def __init__(self, selector: str, reason: str = ""):
        message = f"Element not found: {selector}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.selector = selector


class NavigationTimeout(DemoError):
    """ページ遷移がタイムアウトした（回復可能）"""

    def __init__(self, url: str, timeout_ms: int):
        super().__init__(f"Navigation to {url} timed out after {timeout_ms}ms")
        self.url = url
        self.timeout_ms = timeout_ms


class ProviderUnavailable(DemoError):
    """LLMプロバイダが未設定、または呼び出しに失敗した（内部でフォールバック）"""
    pass


class MalformedModelOutput(DemoError):
    """LLMの出力を構造化アクションとして解析できない（内部でフォールバック）"""
    pass


class ActionFailed(DemoError):
    """ブラウザは生きているが操作が失敗した（回復可能）"""
    pass


class NavigationFailed(ActionFailed):
    """タイムアウト以外の理由でページ遷移に失敗した（不正なURL、名前解決の失敗など）"""

    def __init__(self, url: str, reason: str = ""):
        message = f"Navigation to {url} failed"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.url = url
