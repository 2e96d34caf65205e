"""
Error Classifier

Maps any raised error to a stable, user-facing ErrorRecord:

    classify(raw_error, context) -> ErrorRecord

User-facing messages come only from the tables below; the raw exception
text is never shown. Diagnostics stay in logs, scrubbed by the redactor.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from ..exceptions import (
    LocationNotSpecifiedError,
    LocationNotSupportedError,
    NetworkError,
    NoSuitableAPIError,
    QueryParsingError,
    RateLimitExceededError,
    WeatherClientError,
    WeatherServiceError,
)
from ..models import ErrorRecord, Severity
from ..utils.redaction import redact

logger = logging.getLogger(__name__)


PARSING_FAILED = "PARSING_FAILED"
NO_SUITABLE_API = "NO_SUITABLE_API"
LOCATION_NOT_SPECIFIED = "LOCATION_NOT_SPECIFIED"
LOCATION_NOT_SUPPORTED = "LOCATION_NOT_SUPPORTED"
INVALID_REQUEST = "INVALID_REQUEST"
RATE_LIMITED = "RATE_LIMITED"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
NETWORK_ERROR = "NETWORK_ERROR"

DEFAULT_RETRY_AFTER = {RATE_LIMITED: 60.0, SERVICE_UNAVAILABLE: 120.0, NETWORK_ERROR: 30.0}


@dataclass(frozen=True)
class ErrorPolicy:
    severity: Severity
    retryable: bool
    # User-correctable failures are not the service's fault
    counts_toward_failure_rate: bool


POLICIES: Dict[str, ErrorPolicy] = {
    PARSING_FAILED: ErrorPolicy(Severity.LOW, False, False),
    NO_SUITABLE_API: ErrorPolicy(Severity.HIGH, False, True),
    LOCATION_NOT_SPECIFIED: ErrorPolicy(Severity.LOW, False, False),
    LOCATION_NOT_SUPPORTED: ErrorPolicy(Severity.LOW, False, False),
    INVALID_REQUEST: ErrorPolicy(Severity.MEDIUM, False, True),
    RATE_LIMITED: ErrorPolicy(Severity.MEDIUM, True, True),
    SERVICE_UNAVAILABLE: ErrorPolicy(Severity.HIGH, True, True),
    NETWORK_ERROR: ErrorPolicy(Severity.HIGH, True, True),
}


# code -> language -> (message, suggestions)
MESSAGES: Dict[str, Dict[str, tuple]] = {
    PARSING_FAILED: {
        "en": ("Sorry, I couldn't understand that weather question.",
               ["Try naming a place and a time, e.g. \"Tokyo weather tomorrow\"."]),
        "zh-TW": ("抱歉，無法理解這個天氣問題。",
                  ["請提供地點和時間，例如「台北明天天氣」。"]),
        "zh-CN": ("抱歉，无法理解这个天气问题。",
                  ["请提供地点和时间，例如“北京明天天气”。"]),
        "ja": ("申し訳ありません、天気の質問を理解できませんでした。",
               ["場所と時間を指定してください。例：「東京 明日の天気」"]),
    },
    NO_SUITABLE_API: {
        "en": ("No weather data source can answer this kind of question right now.",
               ["Try asking for current conditions or a forecast instead.",
                "If this keeps happening, please contact the service operator."]),
        "zh-TW": ("目前沒有可回答此類問題的天氣資料來源。",
                  ["請改為查詢目前天氣或天氣預報。", "若問題持續，請聯絡服務管理員。"]),
        "zh-CN": ("目前没有可回答此类问题的天气数据源。",
                  ["请改为查询当前天气或天气预报。", "若问题持续，请联系服务管理员。"]),
        "ja": ("現在、この種類の質問に対応できる気象データがありません。",
               ["現在の天気または予報をお尋ねください。", "問題が続く場合は運営者にお問い合わせください。"]),
    },
    LOCATION_NOT_SPECIFIED: {
        "en": ("Please tell me which location you'd like the weather for.",
               ["Add a city name, e.g. \"weather in Taipei today\"."]),
        "zh-TW": ("請告訴我您想查詢哪個地點的天氣。",
                  ["請加上城市名稱，例如「台北今天天氣」。"]),
        "zh-CN": ("请告诉我您想查询哪个地点的天气。",
                  ["请加上城市名称，例如“上海今天天气”。"]),
        "ja": ("どの場所の天気を知りたいか教えてください。",
               ["都市名を追加してください。例：「東京の今日の天気」"]),
    },
    LOCATION_NOT_SUPPORTED: {
        "en": ("Sorry, I couldn't find weather information for that location.",
               ["Please try a more specific location name, like \"New York, NY\" or \"Tokyo, Japan\"."]),
        "zh-TW": ("抱歉，找不到該地點的天氣資訊。",
                  ["請嘗試更具體的地點名稱，例如「台北市」或「東京，日本」。"]),
        "zh-CN": ("抱歉，找不到该地点的天气信息。",
                  ["请尝试更具体的地点名称，例如“北京市”或“东京，日本”。"]),
        "ja": ("申し訳ありません、その場所の天気情報が見つかりませんでした。",
               ["「東京都」や「大阪市」のように、より具体的な地名をお試しください。"]),
    },
    INVALID_REQUEST: {
        "en": ("The weather service could not process this request.",
               ["Please try rephrasing your weather query."]),
        "zh-TW": ("天氣服務無法處理此請求。",
                  ["請換個方式描述您的天氣問題。"]),
        "zh-CN": ("天气服务无法处理此请求。",
                  ["请换个方式描述您的天气问题。"]),
        "ja": ("天気サービスがこのリクエストを処理できませんでした。",
               ["質問の表現を変えてお試しください。"]),
    },
    RATE_LIMITED: {
        "en": ("Too many weather requests in a short time.",
               ["Please wait a moment before making another weather query."]),
        "zh-TW": ("短時間內天氣查詢請求過多。",
                  ["請稍等片刻再進行下一次天氣查詢。"]),
        "zh-CN": ("短时间内天气查询请求过多。",
                  ["请稍等片刻再进行下一次天气查询。"]),
        "ja": ("短時間に天気のリクエストが多すぎます。",
               ["少し待ってから再度お試しください。"]),
    },
    SERVICE_UNAVAILABLE: {
        "en": ("Weather service is temporarily unavailable.",
               ["Please try again in a few minutes."]),
        "zh-TW": ("天氣服務暫時無法使用。",
                  ["請稍後再試。"]),
        "zh-CN": ("天气服务暂时无法使用。",
                  ["请稍后再试。"]),
        "ja": ("天気サービスは一時的に利用できません。",
               ["数分後にもう一度お試しください。"]),
    },
    NETWORK_ERROR: {
        "en": ("Unable to connect to weather service.",
               ["Please check your internet connection and try again."]),
        "zh-TW": ("無法連線到天氣服務。",
                  ["請檢查網路連線後再試一次。"]),
        "zh-CN": ("无法连接到天气服务。",
                  ["请检查网络连接后再试一次。"]),
        "ja": ("天気サービスに接続できません。",
               ["インターネット接続を確認して、もう一度お試しください。"]),
    },
}


def normalize_language(language: Optional[str]) -> str:
    """Map any language tag onto one of the message tables."""
    if not language:
        return "en"
    tag = language.replace("_", "-").lower()
    if tag in ("zh-cn", "zh-hans", "zh-sg"):
        return "zh-CN"
    if tag.startswith("zh"):
        return "zh-TW"
    if tag.startswith("ja"):
        return "ja"
    return "en"


def _code_for(error: BaseException) -> str:
    if isinstance(error, QueryParsingError):
        return PARSING_FAILED
    if isinstance(error, LocationNotSpecifiedError):
        return LOCATION_NOT_SPECIFIED
    if isinstance(error, LocationNotSupportedError):
        return LOCATION_NOT_SUPPORTED
    if isinstance(error, NoSuitableAPIError):
        return NO_SUITABLE_API
    if isinstance(error, RateLimitExceededError):
        return RATE_LIMITED
    if isinstance(error, NetworkError):
        return NETWORK_ERROR
    if isinstance(error, WeatherClientError):
        return INVALID_REQUEST
    if isinstance(error, WeatherServiceError):
        return SERVICE_UNAVAILABLE

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 404:
            return LOCATION_NOT_SUPPORTED
        if status == 429:
            return RATE_LIMITED
        if 400 <= status < 500:
            return INVALID_REQUEST
        return SERVICE_UNAVAILABLE
    if isinstance(error, (httpx.TimeoutException, TimeoutError)):
        return SERVICE_UNAVAILABLE
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return NETWORK_ERROR

    return SERVICE_UNAVAILABLE


def classify(
    raw_error: Union[BaseException, str],
    context: Optional[Mapping[str, Any]] = None,
) -> ErrorRecord:
    """
    Convert an exception (or a known error code) into an ErrorRecord.

    Args:
        raw_error: The caught exception, or one of the code constants
        context: Optional {"language": ..., "query": ..., "location": ...}

    Never raises; unknown causes become a retryable SERVICE_UNAVAILABLE.
    """
    context = context or {}
    language = normalize_language(context.get("language"))

    if isinstance(raw_error, str):
        code = raw_error if raw_error in POLICIES else SERVICE_UNAVAILABLE
    else:
        code = _code_for(raw_error)
        if code == SERVICE_UNAVAILABLE and not isinstance(raw_error, (WeatherServiceError, httpx.HTTPError, TimeoutError)):
            logger.error(
                "Unclassified error %s: %s",
                type(raw_error).__name__, redact(str(raw_error)),
            )

    policy = POLICIES[code]
    message, suggestions = MESSAGES[code][language]

    retry_after = None
    if policy.retryable:
        retry_after = getattr(raw_error, "retry_after", None) or DEFAULT_RETRY_AFTER.get(code)

    return ErrorRecord(
        code=code,
        severity=policy.severity,
        retryable=policy.retryable,
        suggestions=list(suggestions),
        user_message=message,
        counts_toward_failure_rate=policy.counts_toward_failure_rate,
        retry_after=retry_after,
    )
