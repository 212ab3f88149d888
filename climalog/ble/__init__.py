"""BLE link to the temperature/humidity sensor."""
