"""Topic / Subscription Naming.

논리 채널 이름, 환경 태그, 서비스 식별자로부터
물리 토픽과 구독 이름을 결정적으로 만듭니다.

    topic:              <logicalName>__<ENV>
    구독:               <service>-<topic>-<ENV>-t<unixMillis>-<instance>

구독 이름은 전송 계층 길이 제한(255자)에 맞춰 오른쪽을 잘라냅니다.
잘린 이름끼리 충돌할 가능성은 감수합니다.
"""

from __future__ import annotations

import time
import uuid

from apps.cache_machine.domain.enums import MethodName, TopicGranularity
from apps.cache_machine.domain.exceptions import ConfigurationError

SEPARATOR = "__"
SUBSCRIPTION_NAME_LIMIT = 255

# 논리 채널
MODEL_TOPIC = "models"
PRIME_CACHE_TOPIC = "create-cache"
ASK_PRIME_CACHE_TOPIC = "start-cache-client"


class Naming:
    """환경/서비스에 고정된 이름 생성기.

    Raises:
        ConfigurationError: environment 또는 service_name이 비어있음
    """

    def __init__(self, environment: str, service_name: str, instance_id: str | None = None) -> None:
        if not environment or not environment.strip():
            raise ConfigurationError("environment tag is required")
        if not service_name or not service_name.strip():
            raise ConfigurationError("service_name is required")
        self.environment = environment
        self.service_name = service_name
        self.instance_id = instance_id or uuid.uuid4().hex[:8]

    def topic(self, name: str) -> str:
        """논리 이름 → 물리 토픽 이름."""
        return f"{name}{SEPARATOR}{self.environment}"

    def unique_subscription(self, topic_name: str, now_ms: int | None = None) -> str:
        """인스턴스마다 고유한 구독 이름. 같은 서비스의 인스턴스도 메시지를 각자 받습니다."""
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        name = "-".join(
            [self.service_name, topic_name, self.environment, f"t{now_ms}", self.instance_id]
        )
        return name[:SUBSCRIPTION_NAME_LIMIT]

    def response_channel(self) -> str:
        """이 서비스의 priming 응답 논리 채널."""
        return f"{PRIME_CACHE_TOPIC}.{self.service_name}"


def model_topic(
    model_name: str,
    method_name: MethodName | str,
    granularity: TopicGranularity,
) -> str:
    """모델 변경이 흐르는 논리 토픽 이름."""
    if granularity is TopicGranularity.SHARED:
        return MODEL_TOPIC
    if granularity is TopicGranularity.MODEL:
        return model_name
    method = method_name.value if isinstance(method_name, MethodName) else method_name
    return f"{model_name}.{method}"
