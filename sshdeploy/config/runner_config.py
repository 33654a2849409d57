"""
Настройки пула соединений, SSH подключения и логирования
"""
from datetime import timedelta
from typing import Any, Dict

from pydantic import BaseModel, Field


class PoolConfig(BaseModel):
    """Конфигурация пула SSH соединений"""

    max_idle: int = Field(default=5, ge=0, description="Максимум простаивающих соединений (информационно)")
    max_lifetime: float = Field(default=300, gt=0, description="Максимальное время жизни соединения в секундах")
    idle_timeout: float = Field(default=60, gt=0, description="Таймаут простоя соединения в секундах")
    cleanup_interval: float = Field(default=30, gt=0, description="Период очистки пула в секундах")

    @property
    def max_lifetime_delta(self) -> timedelta:
        return timedelta(seconds=self.max_lifetime)

    @property
    def idle_timeout_delta(self) -> timedelta:
        return timedelta(seconds=self.idle_timeout)


class ConnectionSettings(BaseModel):
    """Параметры SSH подключения и выполнения команд"""

    port: int = Field(default=22, ge=1, le=65535, description="Порт SSH по умолчанию")
    connect_timeout: float = Field(default=10, gt=0, le=300, description="Таймаут подключения в секундах")
    banner_timeout: float = Field(default=30, gt=0, description="Таймаут SSH баннера в секундах")
    auth_timeout: float = Field(default=30, gt=0, description="Таймаут аутентификации в секундах")
    connect_attempts: int = Field(default=1, ge=1, le=10, description="Количество попыток подключения")
    retry_min_wait: float = Field(default=1, ge=0, description="Минимальная пауза между попытками")
    retry_max_wait: float = Field(default=4, ge=0, description="Максимальная пауза между попытками")
    command_timeout: float = Field(default=300, gt=0, description="Таймаут команды по умолчанию в секундах")


class LoggingConfig(BaseModel):
    """Конфигурация логирования"""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$", description="Уровень логирования")
    log_file: str = Field(default="logs/sshdeploy.log", description="Путь к файлу логов")
    error_file: str = Field(default="logs/errors.log", description="Путь к файлу ошибок")
    max_file_size: str = Field(default="10 MB", description="Максимальный размер файла лога")
    retention_days: int = Field(default=7, ge=1, le=365, description="Количество дней хранения логов")
    compression: bool = Field(default=True, description="Сжимать ли старые логи")


class RunnerSettings(BaseModel):
    """Секция settings файла развертывания"""

    pool: PoolConfig = Field(default_factory=PoolConfig)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Преобразование в словарь"""
        return self.model_dump()
