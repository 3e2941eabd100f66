from typing import List

from .models import UserDefine, UserDefineKind

# Keys a device catalog may offer; anything else is a catalog typo
KNOWN_USER_DEFINE_KEYS = frozenset([
    "REGULATORY_DOMAIN_AU_915",
    "REGULATORY_DOMAIN_EU_868",
    "REGULATORY_DOMAIN_IN_866",
    "REGULATORY_DOMAIN_AU_433",
    "REGULATORY_DOMAIN_EU_433",
    "REGULATORY_DOMAIN_FCC_915",
    "REGULATORY_DOMAIN_ISM_2400",
    "REGULATORY_DOMAIN_EU_CE_2400",
    "MY_BINDING_PHRASE",
    "HYBRID_SWITCHES_8",
    "ENABLE_TELEMETRY",
    "TLM_REPORT_INTERVAL_MS",
    "FAST_SYNC",
    "R9M_UNLOCK_HIGHER_POWER",
    "UNLOCK_HIGHER_POWER",
    "USE_ESP8266_BACKPACK",
    "USE_TX_BACKPACK",
    "JUST_BEEP_ONCE",
    "DISABLE_ALL_BEEPS",
    "DISABLE_STARTUP_BEEP",
    "MY_STARTUP_MELODY",
    "WS2812_IS_GRB",
    "USE_DIVERSITY",
    "NO_SYNC_ON_ARM",
    "ARM_CHANNEL",
    "FEATURE_OPENTX_SYNC",
    "FEATURE_OPENTX_SYNC_AUTOTUNE",
    "LOCK_ON_FIRST_CONNECTION",
    "LOCK_ON_50HZ",
    "USE_R9MM_R9MINI_SBUS",
    "AUTO_WIFI_ON_INTERVAL",
    "HOME_WIFI_SSID",
    "HOME_WIFI_PASSWORD",
    "USE_500HZ",
    "USE_DYNAMIC_POWER",
    "BLE_HID_JOYSTICK",
    "UART_INVERTED",
    "RCVR_UART_BAUD",
    "RCVR_INVERT_TX",
    "USE_AIRPORT_AT_BAUD",
    "TLM_REPORT_INTERVAL",
])


def _quote(value: str) -> str:
    escaped = value.replace('\\', '\\\\').replace('"', '\\"')
    return f'"{escaped}"'


class UserDefinesTxtFactory:
    """Renders user defines into the user_defines.txt format read by the firmware build."""

    def build(self, user_defines: List[UserDefine]) -> str:
        return "\n".join(
            self.render(user_define) for user_define in user_defines if user_define.enabled
        )

    def render(self, user_define: UserDefine) -> str:
        value = user_define.value if user_define.value is not None else ""
        if user_define.type is UserDefineKind.BOOLEAN:
            return f"-D{user_define.key}"
        if user_define.type is UserDefineKind.NUMBER:
            return f"-D{user_define.key}={value}"
        if user_define.type is UserDefineKind.TEXT:
            return f"-D{user_define.key}={_quote(value)}"
        if user_define.type is UserDefineKind.ENUM:
            if value not in (user_define.enum_values or []):
                raise ValueError(
                    f"{user_define.key}: '{value}' is not one of {user_define.enum_values}"
                )
            return f"-D{user_define.key}={value}"
        raise ValueError(f"unsupported user define type: {user_define.type}")


class UserDefinesValidator:
    def validate(self, user_defines: List[UserDefine]) -> List[ValueError]:
        errors: List[ValueError] = []
        for user_define in user_defines:
            if not user_define.enabled:
                continue
            value = user_define.value or ""
            if user_define.type is UserDefineKind.TEXT and value.strip() == "":
                errors.append(ValueError(f"{user_define.key} value must not be empty"))
            elif user_define.type is UserDefineKind.NUMBER:
                try:
                    float(value)
                except ValueError:
                    errors.append(ValueError(f"{user_define.key} value '{value}' is not a number"))
            elif user_define.type is UserDefineKind.ENUM and value not in (user_define.enum_values or []):
                errors.append(ValueError(f"{user_define.key} value '{value}' is not an allowed option"))
        return errors
