# WeBill live API test suite
